"""
Value types shared by the playback core.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class MediaDescriptor:
    """Resolved metadata for a playable item, before anything is downloaded."""
    id: str
    title: str
    url: str
    duration: int = 0  # in seconds
    approx_size_bytes: Optional[int] = None
    age_restricted: bool = False
    available: bool = True
    uploader: str = "Unknown"


@dataclass(frozen=True, eq=False)
class QueueEntry:
    """A track waiting in (or taken from) a session queue. Compared by id."""
    id: str
    title: str
    source_url: str
    duration: int = 0
    requester_name: str = "Unknown"
    requester_id: Optional[int] = None

    def __eq__(self, other):
        if not isinstance(other, QueueEntry):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    @classmethod
    def from_descriptor(cls, descriptor: MediaDescriptor, requester_name: str = "Unknown",
                        requester_id: Optional[int] = None) -> "QueueEntry":
        return cls(
            id=descriptor.id,
            title=descriptor.title,
            source_url=descriptor.url,
            duration=descriptor.duration or 0,
            requester_name=requester_name,
            requester_id=requester_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "Unknown",
            source_url=data.get("source_url") or data.get("url") or "",
            duration=int(data.get("duration") or 0),
            requester_name=data.get("requester_name") or "Unknown",
            requester_id=data.get("requester_id"),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """Snapshot of a completed playback."""
    entry: QueueEntry
    played_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = self.entry.to_dict()
        data["played_at"] = self.played_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        played_at = data.get("played_at")
        try:
            when = datetime.fromisoformat(played_at) if played_at else datetime.now(timezone.utc)
        except ValueError:
            when = datetime.now(timezone.utc)
        return cls(entry=QueueEntry.from_dict(data), played_at=when)


class EventKind(Enum):
    ENQUEUED = "enqueued"
    PLAYLIST_ENQUEUED = "playlist_enqueued"
    DUPLICATE_WARNING = "duplicate_warning"
    DOWNLOADING = "downloading"
    NOW_PLAYING = "now_playing"
    ERROR = "error"
    RECONNECT_STATUS = "reconnect_status"
    RECONNECTED = "reconnected"
    CONNECTION_LOST = "connection_lost"
    RADIO_REFILLED = "radio_refilled"
    STATUS_UPDATE = "status_update"
    QUEUE_EMPTY = "queue_empty"
    QUEUE_FINISHED = "queue_finished"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SessionEvent:
    """Structured notification for the presentation layer."""
    kind: EventKind
    guild_id: int
    entry: Optional[QueueEntry] = None
    error: Optional[Enum] = None
    detail: str = ""
    position: Optional[int] = None
    count: Optional[int] = None
    attempt: Optional[int] = None
    max_attempts: Optional[int] = None
    elapsed: Optional[int] = None  # seconds into now playing
    paused: bool = False
