"""Shared dependencies for FastAPI routes."""
from __future__ import annotations

from fastapi import Request

from .store import ProfileStore


def get_store(request: Request) -> ProfileStore:
    """Return the profile store attached to the running application."""

    return request.app.state.store
