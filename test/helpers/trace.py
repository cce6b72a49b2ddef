# test/helpers/trace.py

from __future__ import annotations


def make_exchange(
    *,
    phase: str,
    request: dict | None,
    response: dict | None,
    key: str | None = None,
    status: str | None = None,
):
    return {
        "phase": phase,
        "key": key,
        "request": request,
        "response": response,
        "status": status,
    }


def wire_summary(wire) -> dict:
    """Loggable view of a WireRequest (payload keys only, not values)."""
    return {
        "url": wire.url,
        "method": wire.method,
        "timeout_s": wire.timeout_s,
        "data_keys": sorted(wire.data),
    }
