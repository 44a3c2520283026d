from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy.orm import Session

from volunteer_automation.core.logger import get_logger
from volunteer_automation.models import Notification

logger = get_logger(__name__)

AUTOMATED_TITLE = "Automated Notification"


def send_notifications(
    db: Session,
    recipients: Iterable[str],
    message: str,
    notification_type: str = "info",
    action_url: str | None = None,
    metadata: dict[str, Any] | None = None,
    title: str = AUTOMATED_TITLE,
) -> int:
    """Insert one in-app notification per recipient user id.

    All rows are committed together, so a failure leaves none behind.
    """
    rows = [
        Notification(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            action_url=action_url,
            meta=metadata or {},
        )
        for user_id in recipients
    ]
    try:
        db.add_all(rows)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Notification type=%s recipients=%s", notification_type, len(rows))
    return len(rows)
