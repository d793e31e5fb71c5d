"""In-memory session registry.

All mutation happens on the event loop thread, between awaits, so the
registry needs no locking.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Iterator, Optional

import structlog

from .types import Session, SessionSummary

logger = structlog.get_logger()


class SessionRegistry:
    """Maps session ids to their ``Session`` state."""

    def __init__(self, sessions_dir: Path) -> None:
        self.sessions_dir = Path(sessions_dir)
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def auth_path(self, instance_name: str) -> Path:
        """Credential directory of an instance."""
        return self.sessions_dir / instance_name

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def create(
        self, session_id: str, instance_name: str, webhook_secret: str = ""
    ) -> Session:
        """Register a new session, or return the existing one unchanged."""
        existing = self._sessions.get(session_id)
        if existing is not None:
            logger.info(
                "Session already exists",
                session_id=session_id,
                instance_name=existing.instance_name,
            )
            return existing

        session = Session(
            session_id=session_id,
            instance_name=instance_name,
            webhook_secret=webhook_secret,
        )
        self._sessions[session_id] = session
        return session

    def discard(self, session: Session) -> bool:
        """Drop ``session`` if it is still the registered entry for its id."""
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
            return True
        return False

    def list(self) -> list[SessionSummary]:
        """Summaries in insertion order."""
        return [session.summary() for session in self._sessions.values()]

    async def delete(self, session_id: str) -> bool:
        """Log out, erase credentials and forget a session.

        Returns:
            False if no session is registered under ``session_id``.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False

        await self.teardown(session, logout=True)
        await self.erase_credentials(session.instance_name)

        self.discard(session)
        logger.info(
            "Session deleted",
            session_id=session_id,
            instance_name=session.instance_name,
        )
        return True

    async def erase_credentials(self, instance_name: str) -> None:
        """Remove an instance's credential directory, logging failures."""
        path = self.auth_path(instance_name)
        try:
            if path.exists():
                await asyncio.to_thread(shutil.rmtree, path)
        except OSError as e:
            logger.warning(
                "Failed to remove session files",
                instance_name=instance_name,
                path=str(path),
                error=str(e),
            )

    async def teardown(self, session: Session, *, logout: bool) -> None:
        """Close a session's connection and stop its event consumer.

        Webhooks already queued for the session are still delivered.
        Failures are logged; teardown always completes.
        """
        if not session.closed:
            session.outbox.put_nowait(None)
        session.closed = True
        connection = session.connection

        if connection is not None and logout:
            try:
                await connection.logout()
            except Exception as e:
                logger.warning("Logout error", session_id=session.session_id, error=str(e))

        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.warning(
                    "Connection close error", session_id=session.session_id, error=str(e)
                )

        session.connection = None
        session.mark_closed()

        worker = session.worker
        if worker is not None and not worker.done() and worker is not asyncio.current_task():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        session.worker = None
