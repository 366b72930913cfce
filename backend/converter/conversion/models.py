"""Queue item and file models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from converter.config import PDF_MEDIA_TYPE


class TaskStatus(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    COMPLETED = "completed"
    ERROR = "error"


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class FileCandidate:
    """An uploaded file as received from the client."""

    name: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_document(self) -> bool:
        return self.media_type.lower() == PDF_MEDIA_TYPE


@dataclass(frozen=True)
class ConversionOutput:
    handle: str
    blob: bytes = field(repr=False)
    file_name: str


@dataclass(frozen=True)
class ConversionItem:
    """One queued file. Replaced on every change, never mutated in place."""

    item_id: str
    source: FileCandidate
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    output: Optional[ConversionOutput] = None
    error: Optional[str] = None
    attempt: int = 0
