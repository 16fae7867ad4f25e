"""Background sweep that tears down drained sessions."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from cookbook_sessions.config import SessionConfig
from cookbook_sessions.domain.sessions import Session
from cookbook_sessions.services.sessions import SessionManager

_logger = logging.getLogger(__name__)


@dataclass
class SessionCleanupService:
    """Periodically ends sessions that have no scopes and have expired."""

    session_manager: SessionManager
    config: SessionConfig
    error_backoff_seconds: float = 30.0

    async def sweep(self, now: datetime | None = None) -> int:
        """End every eligible session and return how many were ended."""
        expired = self.session_manager.expired_sessions(now)
        if not expired:
            return 0

        _logger.info("Found %s expired sessions to clean up", len(expired))
        semaphore = asyncio.Semaphore(self.config.max_concurrent_cleanup)

        async def cleanup(session: Session) -> bool:
            async with semaphore:
                try:
                    return await self.session_manager.end_session_if_expired(
                        session, now
                    )
                except Exception:
                    _logger.exception("Error cleaning up session %s", session.id)
                    return False

        results = await asyncio.gather(*(cleanup(session) for session in expired))
        return sum(results)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sweep on the configured interval until `stop_event` is set."""
        _logger.info("Session cleanup service started")
        interval = self.config.cleanup_interval.total_seconds()
        while not stop_event.is_set():
            try:
                await self.sweep()
                delay = interval
            except Exception:
                _logger.exception("Error occurred during session cleanup")
                delay = self.error_backoff_seconds
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except TimeoutError:
                continue
        _logger.info("Session cleanup service stopped")
