"""Brokerage web frontend: FastAPI routers over the SQLModel-backed services.

The ASGI app lives in :mod:`brokerage.webapp.application` and is loaded on
first access of ``brokerage.webapp.app`` so the service modules can be
imported (by the CLI and tests) without wiring routes or touching the
schema metadata row.

Run it with ``uvicorn brokerage.webapp:app``.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any, List

_LAZY_EXPORTS = ("app", "health")

__all__: List[str] = list(_LAZY_EXPORTS)


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        return getattr(import_module(".application", __name__), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
