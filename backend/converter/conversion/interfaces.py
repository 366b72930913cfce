from typing import Optional, Protocol

from .models import Severity


class Notifier(Protocol):
    def notify(self, title: str, message: str, severity: Severity = Severity.INFO) -> None:
        """Fire-and-forget user notification."""


class DownloadTrigger(Protocol):
    def trigger(self, handle: str, file_name: str) -> None:
        """Start a client-side save of the artifact. Must tolerate repeated calls."""


class ArtifactGateway(Protocol):
    def mint(self, blob: bytes, file_name: str, media_type: str) -> str:
        ...

    def release(self, handle: str) -> bool:
        ...

    def get(self, handle: str) -> Optional[object]:
        ...
