"""
Error taxonomy for the playback core.

Enqueue-time errors propagate to the caller so the command layer can render
them. Dispatch-time errors are turned into session events instead.
"""
from enum import Enum
from typing import Optional


class MusicError(Exception):
    """Base class for playback errors."""

    def __init__(self, kind: Optional[Enum] = None, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(detail or (kind.value if kind else self.__class__.__name__))


class ResolutionKind(Enum):
    NO_RESULTS = "no_results"
    INVALID_INPUT = "invalid_input"
    AGE_RESTRICTED = "age_restricted"
    UNAVAILABLE = "unavailable"
    EXTERNAL_SERVICE = "external_service"


class ResolutionError(MusicError):
    """A request could not be turned into playable media."""


class RejectionKind(Enum):
    QUEUE_FULL = "queue_full"
    TOO_LONG = "too_long"
    TOO_LARGE = "too_large"
    DUPLICATE = "duplicate"


class EnqueueRejected(MusicError):
    """Resolved media was refused by a queue rule."""


class FetchKind(Enum):
    NETWORK = "network"
    UNAVAILABLE = "unavailable"
    AGE_RESTRICTED = "age_restricted"
    TOO_LARGE = "too_large"
    TOO_LONG = "too_long"
    DECODE = "decode"


class FetchError(MusicError):
    """Downloading media to the local cache failed."""


class PersistenceError(MusicError):
    """Reading or writing a saved queue failed."""


class TransportError(MusicError):
    """The voice connection could not be established or recovered."""


class SessionTerminated(MusicError):
    """The session was stopped while the request was in flight."""


def classify_media_error(message: str) -> Optional[str]:
    """Map a yt-dlp error message to 'age_restricted', 'unavailable' or None."""
    text = (message or "").lower()
    if any(marker in text for marker in ("age-restricted", "age restricted", "age limit", "sign in to confirm")):
        return "age_restricted"
    if "unavailable" in text or "private" in text or "removed" in text:
        return "unavailable"
    return None
