from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from dateutil import parser as dt_parser


@dataclass(frozen=True)
class BookmarkRecord:
    id: str
    title: str
    target: str
    owner_id: str
    created_at: datetime

    @classmethod
    def from_payload(cls, payload: dict) -> "BookmarkRecord":
        created_at = dt_parser.isoparse(payload["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=str(payload["id"]),
            title=payload["title"],
            target=payload["url"],
            owner_id=str(payload["user_id"]),
            created_at=created_at,
        )


@dataclass(frozen=True)
class SessionIdentity:
    id: str
    email: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return "User"

    @classmethod
    def from_payload(cls, payload: dict) -> "SessionIdentity":
        return cls(
            id=str(payload["id"]),
            email=payload.get("email"),
            full_name=payload.get("full_name"),
            avatar_url=payload.get("avatar_url"),
        )


def id_sort_key(record_id: str) -> tuple[int, int, str]:
    # Numeric ids rank above non-numeric ones and compare by value.
    if record_id.isdigit():
        return (1, int(record_id), "")
    return (0, 0, record_id)


def order_records(records) -> list[BookmarkRecord]:
    return sorted(records, key=lambda record: id_sort_key(record.id), reverse=True)
