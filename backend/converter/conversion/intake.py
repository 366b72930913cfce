"""Upload admission: only accepted media types may enter the queue."""
import logging
from typing import Iterable, Optional

from converter.config import ACCEPTED_MEDIA_TYPES

from .errors import InvalidType
from .interfaces import Notifier
from .models import FileCandidate, Severity

logger = logging.getLogger("converter.intake")


def is_accepted(candidate: FileCandidate, accepted: Optional[set[str]] = None) -> bool:
    accepted = ACCEPTED_MEDIA_TYPES if accepted is None else accepted
    return (candidate.media_type or "").strip().lower() in accepted


def check_type(candidate: FileCandidate, accepted: Optional[set[str]] = None) -> None:
    if not is_accepted(candidate, accepted):
        raise InvalidType(f"{candidate.name} is not a JPG or PDF file.")


def admit(
    candidates: Iterable[FileCandidate],
    notifier: Notifier,
    accepted: Optional[set[str]] = None,
) -> list[FileCandidate]:
    """Return the accepted candidates in their original order; notify about each rejected one."""
    admitted: list[FileCandidate] = []
    for candidate in candidates:
        try:
            check_type(candidate, accepted)
        except InvalidType as e:
            logger.info("Rejected %s (%s)", candidate.name, candidate.media_type or "unknown type")
            notifier.notify("Invalid file type", str(e), Severity.ERROR)
            continue
        admitted.append(candidate)
    return admitted
