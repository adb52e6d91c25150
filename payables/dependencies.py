"""Shared FastAPI dependencies."""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException

from payables.client import PayablesClient
from payables.database import get_session
from payables.services import PayablesSession, SessionRegistry

_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    """Process-wide session registry backed by the configured platform client."""

    global _registry
    if _registry is None:
        _registry = SessionRegistry(PayablesClient())
    return _registry


def get_payables_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> PayablesSession:
    try:
        return registry.get(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Payables session not found") from exc


get_db = get_session
