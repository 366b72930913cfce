"""Per-session conversion queues. In memory only; nothing survives a restart."""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from converter.config import SESSION_IDLE_SECONDS
from converter.conversion.adapters import ArtifactStore, DownloadLog, NotificationLog
from converter.conversion.service import ConversionQueueManager

logger = logging.getLogger("converter.sessions")


@dataclass
class QueueSession:
    session_id: str
    manager: ConversionQueueManager
    notifications: NotificationLog = field(default_factory=NotificationLog)
    downloads: DownloadLog = field(default_factory=DownloadLog)
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()


_sessions: dict[str, QueueSession] = {}
_artifacts: Optional[ArtifactStore] = None


def get_artifact_store() -> ArtifactStore:
    global _artifacts
    if _artifacts is None:
        _artifacts = ArtifactStore()
    return _artifacts


def find_session(session_id: str) -> Optional[QueueSession]:
    """Return the queue for session_id if it exists, without creating one."""
    session = _sessions.get(session_id)
    if session is not None:
        session.touch()
    return session


def get_session(session_id: str) -> QueueSession:
    """Return the queue for session_id, creating it on first use."""
    session = find_session(session_id)
    if session is not None:
        return session
    notifications = NotificationLog()
    downloads = DownloadLog()
    manager = ConversionQueueManager(notifications, downloads, get_artifact_store())
    session = QueueSession(session_id, manager, notifications, downloads)
    _sessions[session_id] = session
    logger.info("Created queue for session %s", session_id)
    return session


async def close_session(session_id: str) -> bool:
    session = _sessions.pop(session_id, None)
    if session is None:
        return False
    await session.manager.shutdown()
    return True


async def close_all_sessions() -> None:
    for session_id in list(_sessions):
        await close_session(session_id)


async def expire_idle_sessions(max_idle: float = SESSION_IDLE_SECONDS, now: Optional[float] = None) -> list[str]:
    """
    Close sessions not seen for max_idle seconds and release their outputs.

    Sessions with a conversion or auto-download still in flight are kept
    until that work settles. Returns the closed session ids.
    """
    if not max_idle:
        return []
    now = time.monotonic() if now is None else now
    expired = [
        s.session_id for s in list(_sessions.values())
        if now - s.last_seen >= max_idle and not s.manager.busy
    ]
    for session_id in expired:
        await close_session(session_id)
        logger.info("Expired idle session %s", session_id)
    return expired
