"""In-memory collaborators used by the HTTP layer and the tests."""
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from converter.config import NOTIFICATION_HISTORY

from .interfaces import ArtifactGateway, DownloadTrigger, Notifier
from .models import Severity

logger = logging.getLogger("converter.artifacts")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Artifact:
    handle: str
    blob: bytes = field(repr=False)
    file_name: str
    media_type: str


class ArtifactStore(ArtifactGateway):
    """Holds converted outputs behind revocable download URLs."""

    def __init__(self, url_prefix: str = "/api/artifacts") -> None:
        self._prefix = url_prefix.rstrip("/")
        self._entries: dict[str, Artifact] = {}
        self._lock = threading.Lock()

    def mint(self, blob: bytes, file_name: str, media_type: str) -> str:
        handle = f"{self._prefix}/{uuid.uuid4().hex}"
        with self._lock:
            self._entries[handle] = Artifact(handle, blob, file_name, media_type)
        logger.debug("Minted artifact %s for %s", handle, file_name)
        return handle

    def get(self, handle: str) -> Optional[Artifact]:
        with self._lock:
            return self._entries.get(handle)

    def lookup(self, token: str) -> Optional[Artifact]:
        return self.get(f"{self._prefix}/{token}")

    def release(self, handle: str) -> bool:
        with self._lock:
            released = self._entries.pop(handle, None)
        if released is None:
            logger.warning("Artifact %s already released", handle)
            return False
        logger.debug("Released artifact %s", handle)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    severity: Severity
    created_at: str


class NotificationLog(Notifier):
    """Keeps the most recent notifications so clients can poll them."""

    def __init__(self, maxlen: int = NOTIFICATION_HISTORY) -> None:
        self._entries: deque[Notification] = deque(maxlen=maxlen or None)

    def notify(self, title: str, message: str, severity: Severity = Severity.INFO) -> None:
        level = logging.WARNING if severity == Severity.ERROR else logging.INFO
        logger.log(level, "%s: %s", title, message)
        self._entries.append(Notification(title, message, severity, _now_iso()))

    def entries(self) -> list[Notification]:
        return list(self._entries)


@dataclass(frozen=True)
class DownloadRequest:
    handle: str
    file_name: str
    requested_at: str


class DownloadLog(DownloadTrigger):
    """Records save requests; the client picks them up and fetches the handle."""

    def __init__(self, maxlen: int = NOTIFICATION_HISTORY) -> None:
        self._entries: deque[DownloadRequest] = deque(maxlen=maxlen or None)

    def trigger(self, handle: str, file_name: str) -> None:
        self._entries.append(DownloadRequest(handle, file_name, _now_iso()))

    def entries(self) -> list[DownloadRequest]:
        return list(self._entries)
