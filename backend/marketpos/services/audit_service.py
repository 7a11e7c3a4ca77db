# Overview: Append-only audit trail of user actions.

"""
Audit Recorder

- Append-only: entries are never updated or deleted.
- Best-effort: an entry is written in its own transaction after the audited
  change has committed. A failure here is logged and swallowed; it must never
  undo or fail the change it describes.
"""

from __future__ import annotations

import json
from datetime import date

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog
from marketpos.time_utils import day_bounds, utcnow

MAX_PAGE_SIZE = 500


def _dump(values: dict | None) -> str | None:
    if values is None:
        return None
    return json.dumps(values, sort_keys=True, default=str)


def record_action(
    *,
    user_id: int,
    action: str,
    table_name: str | None = None,
    record_id: int | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog | None:
    """
    Append and commit an audit entry. Returns None if it could not be written.
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        old_values=_dump(old_values),
        new_values=_dump(new_values),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
        created_at=utcnow(),
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to write audit entry %s for %s#%s", action, table_name, record_id
        )
        return None
    return entry


def list_audit_logs(
    *,
    limit: int = 50,
    offset: int = 0,
    user_id: int | None = None,
    action: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    """
    Newest-first audit entries with pagination metadata.

    `action` is a substring match; dates are inclusive business dates.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    query = db.session.query(AuditLog)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action.contains(action))
    if start_date:
        query = query.filter(AuditLog.created_at >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(AuditLog.created_at < day_bounds(end_date)[1])

    total = query.count()
    logs = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )

    return {
        "logs": [log.to_dict() for log in logs],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": total > offset + limit,
        },
    }
