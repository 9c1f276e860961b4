from __future__ import annotations

from marksync.extensions import db
from marksync.models import ChangeEvent


CHANGE_ACTION_CREATE = "create"
CHANGE_ACTION_DELETE = "delete"


def log_change_event(user_id: int, entity_id: int | None, action: str) -> None:
    event = ChangeEvent(user_id=user_id, entity_id=entity_id, action=action)
    db.session.add(event)


def latest_cursor(user_id: int) -> int:
    return (
        db.session.query(db.func.max(ChangeEvent.id)).filter_by(user_id=user_id).scalar()
        or 0
    )


def changes_since(user_id: int, since: int, limit: int) -> dict:
    events = (
        ChangeEvent.query.filter_by(user_id=user_id)
        .filter(ChangeEvent.id > since)
        .order_by(ChangeEvent.id.asc())
        .limit(limit)
        .all()
    )
    cursor = since
    if events:
        cursor = events[-1].id
    return {
        "events": [event.as_dict() for event in events],
        "cursor": cursor,
        "has_more": len(events) == limit,
    }
