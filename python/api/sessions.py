"""
Import Session Registry

Keeps live import sessions in process memory, keyed by a generated id.
"""

import logging
import uuid

from fastapi import HTTPException, Request

from statement_import.session import ImportSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-process store of import sessions.

    Sessions are only dropped by ``remove``; nothing expires on its own.
    """

    def __init__(self):
        self._sessions: dict[str, ImportSession] = {}

    def add(self, session: ImportSession) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = session
        logger.info(f"Opened import session {session_id} for profile {session.profile_id}")
        return session_id

    def get(self, session_id: str) -> ImportSession | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_session(session_id: str, request: Request) -> ImportSession:
    """Look up a session for FastAPI dependency injection.

    Raises:
        HTTPException: 404 if the session does not exist
    """
    session = get_registry(request).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Import session not found")
    return session
