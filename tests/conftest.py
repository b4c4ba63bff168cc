"""Shared fixtures: every store lives in a throwaway data directory."""

import pytest
from fastapi.testclient import TestClient

from bloodbank import app as app_module
from bloodbank.bank import open_bank


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def seed(data_dir):
    """Write raw table lines into the data directory before the bank opens."""
    def _seed(filename: str, *lines: str):
        (data_dir / filename).write_text("".join(f"{line}\n" for line in lines))
    return _seed


@pytest.fixture
def bank(data_dir):
    return open_bank(data_dir)


@pytest.fixture
def client(bank, monkeypatch):
    monkeypatch.setattr(app_module, "_bank", bank)
    with TestClient(app_module.app) as c:
        yield c
