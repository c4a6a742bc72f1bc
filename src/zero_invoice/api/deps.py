from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from zero_invoice.core.logging import get_logger, log_event
from zero_invoice.modules.imports.service import ImportContext, ImportSession

logger = get_logger(__name__)


class ImportRegistry:
    """In-memory import sessions sharing one context (store, AI client, limits)."""

    def __init__(self, context: ImportContext):
        self.context = context
        self._sessions: dict[str, ImportSession] = {}

    def create(self) -> ImportSession:
        session = ImportSession(self.context)
        self._sessions[session.id] = session
        log_event(logger, "import.session.created", import_session_id=session.id)
        return session

    def get(self, session_id: str) -> ImportSession | None:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


def get_registry(request: Request) -> ImportRegistry:
    return request.app.state.imports


def get_import_session(
    session_id: str, registry: ImportRegistry = Depends(get_registry)
) -> ImportSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Import session not found"
        )
    return session
