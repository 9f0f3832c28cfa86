from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from lms.announcement import format_timestamp, parse_timestamp, utcnow

DELETION_REQUESTS_TABLE = "BookDeletionRequests"


class DeletionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class BookDeletionRequest:
    """Kütüphanecinin bir veya daha fazla kitabın silinmesi için yönetici onayı isteği."""

    book_ids: List[str]
    requested_by: str = ""
    reason: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    request_date: datetime = field(default_factory=utcnow)
    status: DeletionStatus = DeletionStatus.PENDING
    admin_response: Optional[str] = None

    TABLE = DELETION_REQUESTS_TABLE

    @property
    def is_pending(self) -> bool:
        return self.status is DeletionStatus.PENDING

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bookIDs": list(self.book_ids),
            "requestedBy": self.requested_by,
            "reason": self.reason,
            "requestDate": format_timestamp(self.request_date),
            "status": self.status.value,
            "adminResponse": self.admin_response,
        }

    @staticmethod
    def from_row(data: Dict[str, Any]) -> "BookDeletionRequest":
        # SQLite kimlik listesini JSON dize olarak saklar
        book_ids = data.get("bookIDs") or []
        if isinstance(book_ids, str):
            book_ids = json.loads(book_ids)
        return BookDeletionRequest(
            id=str(data["id"]),
            book_ids=[str(book_id) for book_id in book_ids],
            requested_by=data.get("requestedBy") or "",
            reason=data.get("reason") or "",
            request_date=parse_timestamp(data.get("requestDate")) or utcnow(),
            status=DeletionStatus(data.get("status") or DeletionStatus.PENDING.value),
            admin_response=data.get("adminResponse"),
        )
