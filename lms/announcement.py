from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

ANNOUNCEMENTS_TABLE = "announcements"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO 8601, kesirli saniyelerle ve UTC olarak."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class AnnouncementType(str, Enum):
    """Duyurunun hedef kitlesi."""

    LIBRARIAN = "librarian"
    MEMBER = "member"
    ALL = "all"


@dataclass
class Announcement:
    title: str
    content: str
    type: AnnouncementType
    start_date: datetime
    expiry_date: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    is_active: bool = True
    is_archived: bool = False
    last_modified: datetime = field(default_factory=utcnow)

    TABLE = ANNOUNCEMENTS_TABLE

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Etkin, arşivlenmemiş ve yayın penceresi içinde mi?"""
        now = parse_timestamp(now) or utcnow()
        return (
            self.is_active
            and not self.is_archived
            and self.start_date <= now < self.expiry_date
        )

    def targets(self, audience: AnnouncementType) -> bool:
        return self.type is AnnouncementType.ALL or self.type is audience

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "type": self.type.value,
            "start_date": format_timestamp(self.start_date),
            "expiry_date": format_timestamp(self.expiry_date),
            "created_at": format_timestamp(self.created_at),
            "is_active": self.is_active,
            "is_archived": self.is_archived,
            "last_modified": format_timestamp(self.last_modified),
        }

    @staticmethod
    def from_row(data: Dict[str, Any]) -> "Announcement":
        return Announcement(
            id=str(data["id"]),
            title=data.get("title") or "",
            content=data.get("content") or "",
            type=AnnouncementType(data.get("type") or AnnouncementType.ALL.value),
            start_date=parse_timestamp(data["start_date"]),
            expiry_date=parse_timestamp(data["expiry_date"]),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            is_active=bool(data.get("is_active", True)),
            is_archived=bool(data.get("is_archived", False)),
            last_modified=parse_timestamp(data.get("last_modified")) or utcnow(),
        )
