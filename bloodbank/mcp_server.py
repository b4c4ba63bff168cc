"""MCP Blood Bank tool server.

Exposes inventory, compatibility, blood request, reservation, request
history, typing-test completion and report tools over stdio transport,
backed by the blood bank HTTP service. Read tools fall back to the last
good response when the service is unreachable. A FastAPI /health endpoint
runs in a background thread.
"""

import logging
import threading
import time
from datetime import datetime, timezone

import httpx
import uvicorn
from fastapi import FastAPI
from mcp.server.fastmcp import FastMCP

from bloodbank import config

logger = logging.getLogger("bloodbank.mcp")

# Swapped for an in-process transport in tests.
_transport: httpx.AsyncBaseTransport | None = None


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=config.BLOODBANK_BASE, timeout=10.0, transport=_transport)


# ---------------------------------------------------------------------------
# Degraded-mode cache
# ---------------------------------------------------------------------------

_cache: dict[str, dict] = {}
CACHE_MAX_ENTRIES = 64


def _cache_set(key: str, data: dict) -> None:
    # Insertion order doubles as recency; the oldest entry goes first.
    _cache.pop(key, None)
    while len(_cache) >= CACHE_MAX_ENTRIES:
        _cache.pop(next(iter(_cache)))
    _cache[key] = {
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _cache_get(key: str) -> dict | None:
    entry = _cache.get(key)
    if entry is None:
        return None
    return {
        "data": entry["data"],
        "cached_at": entry["timestamp"],
        "warning": "DEGRADED MODE: blood bank unreachable, returning cached data",
    }


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _error(exc: httpx.HTTPStatusError) -> dict:
    try:
        detail = exc.response.json().get("detail")
    except ValueError:
        detail = exc.response.text[:500]
    return {"error": f"Blood bank returned {exc.response.status_code}", "detail": detail}


async def _get(path: str, params: dict | None = None, cache_key: str | None = None) -> dict:
    """GET request with degraded-mode fallback."""
    key = cache_key or path
    try:
        async with _client() as client:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            data = resp.json()
            _cache_set(key, data)
            return data
    except httpx.HTTPStatusError as exc:
        return _error(exc)
    except httpx.HTTPError as exc:
        logger.warning("GET %s failed: %s, trying cache", path, exc)
        cached = _cache_get(key)
        if cached is not None:
            return cached
        raise


async def _post(path: str, body: dict) -> dict:
    """POST request. Mutations are never answered from the cache."""
    try:
        async with _client() as client:
            resp = await client.post(path, json=body)
            resp.raise_for_status()
            return resp.json()
    except httpx.HTTPStatusError as exc:
        return _error(exc)


# ---------------------------------------------------------------------------
# MCP server
# ---------------------------------------------------------------------------

mcp = FastMCP("bloodbank")


@mcp.tool()
async def get_blood_inventory() -> dict:
    """Return every inventory record with units, reservations, expiry and warnings."""
    return await _get("/inventory")


@mcp.tool()
async def get_compatible_donor_types(blood_type: str) -> dict:
    """List the donor blood types a recipient of ``blood_type`` can receive from.

    Args:
        blood_type: Recipient blood type (e.g. "AB-").
    """
    return await _get(f"/compatibility/{blood_type}")


@mcp.tool()
async def request_blood(
    recipient_id: str,
    blood_type: str,
    units: int,
    urgency: str = "Medium",
) -> dict:
    """CRITICAL – Request blood units for a recipient.

    Consumes stock when available; otherwise the request is recorded as
    pending and compatible donor contacts are returned.

    Args:
        recipient_id: The recipient identifier.
        blood_type: Required blood type (e.g. "O+", "A-").
        units: Number of units needed.
        urgency: "Low" | "Medium" | "High". Defaults to "Medium".
    """
    return await _post(
        "/requests",
        {
            "recipient_id": recipient_id,
            "blood_type": blood_type,
            "units": units,
            "urgency": urgency,
        },
    )


@mcp.tool()
async def reserve_blood(blood_type: str, component: str, units: int) -> dict:
    """CRITICAL – Reserve units of one blood type and component.

    Args:
        blood_type: Blood type (e.g. "O-").
        component: "WholeBlood" | "Plasma" | "Platelets".
        units: Number of units to set aside.
    """
    return await _post(
        "/inventory/reserve",
        {"blood_type": blood_type, "component": component, "units": units},
    )


@mcp.tool()
async def get_request_history(recipient_id: str | None = None) -> dict:
    """List recorded blood requests, optionally for one recipient.

    Args:
        recipient_id: Restrict to this recipient's requests.
    """
    params = {"recipient_id": recipient_id} if recipient_id else None
    return await _get("/requests", params=params, cache_key=f"requests:{recipient_id or '*'}")


@mcp.tool()
async def complete_blood_type_test(test_id: str, blood_type: str) -> dict:
    """CRITICAL – Record the result of a blood-typing test.

    Args:
        test_id: The pending test identifier.
        blood_type: The determined blood type (e.g. "B+").
    """
    return await _post(f"/tests/{test_id}/complete", {"blood_type": blood_type})


@mcp.tool()
async def get_bloodbank_report() -> dict:
    """Return totals: donors, recipients, pending tests, units on hand and alerts."""
    return await _get("/reports")


# ---------------------------------------------------------------------------
# Health endpoint (FastAPI in background thread)
# ---------------------------------------------------------------------------

health_app = FastAPI()
_start_time = time.time()


@health_app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "mcp-bloodbank",
        "uptime_seconds": round(time.time() - _start_time, 1),
    }


def _run_health_server() -> None:
    uvicorn.run(health_app, host="0.0.0.0", port=config.HEALTH_PORT, log_level="warning")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='{"timestamp":"%(asctime)s","service":"mcp-bloodbank","level":"%(levelname)s","message":"%(message)s"}',
    )
    health_thread = threading.Thread(target=_run_health_server, daemon=True)
    health_thread.start()
    logger.info("Starting mcp-bloodbank MCP server (stdio transport)")
    mcp.run(transport="stdio")
