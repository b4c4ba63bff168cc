"""CSV table files: one record per line, no header, rewritten whole."""

import csv
import io
import logging
import os
from pathlib import Path

from bloodbank.errors import StorageError

logger = logging.getLogger("bloodbank.storage")


class TableFile:
    """An order-sensitive record file.

    Reads return every row; writes replace the whole file through a temp
    file and ``os.replace`` so a failed write never leaves a half-written
    table behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"TableFile({str(self.path)!r})"

    def read_rows(self) -> list[list[str]]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"could not read {self.path}: {exc}") from exc
        return [row for row in csv.reader(io.StringIO(text)) if row]

    def write_rows(self, rows: list[list[str]]) -> None:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerows(rows)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(buf.getvalue(), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error("Write to %s failed: %s", self.path, exc)
            try:
                tmp.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.warning("Could not remove %s: %s", tmp, cleanup_exc)
            raise StorageError(f"could not write {self.path}: {exc}") from exc

    def append_row(self, row: list[str]) -> None:
        buf = io.StringIO()
        csv.writer(buf, lineterminator="\n").writerow(row)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(buf.getvalue())
        except OSError as exc:
            logger.error("Append to %s failed: %s", self.path, exc)
            raise StorageError(f"could not append to {self.path}: {exc}") from exc
