from .errors import ConversionError, DecodeError, EncodeError, InvalidState, InvalidType, NotFound, QueueFull, ReadError
from .models import ConversionItem, ConversionOutput, FileCandidate, Severity, TaskStatus
from .service import ConversionQueueManager

__all__ = [
    "ConversionError",
    "ConversionItem",
    "ConversionOutput",
    "ConversionQueueManager",
    "DecodeError",
    "EncodeError",
    "FileCandidate",
    "InvalidState",
    "InvalidType",
    "NotFound",
    "QueueFull",
    "ReadError",
    "Severity",
    "TaskStatus",
]
