import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.board.models import ActivityEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    message: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> ActivityEvent:
    """
    Append-only activity log helper.
    The event joins the caller's unit of work; it is persisted when the caller commits.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = ActivityEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_display_name=actor.display_name if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        message=message,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev
