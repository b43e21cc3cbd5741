"""
precinct.services.notification_service — Per-user Inbox
========================================================

Every helper persists a :class:`Notification` in the caller's session and
pushes it to the recipient's open sockets.  Inside the API process the
push goes straight to the realtime hub; elsewhere (the bot) a
``notification_created`` event is queued on the session so the API
forwards it once the transaction commits.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from precinct.database.models import Notification, NotificationType
from precinct.services import event_bus, realtime

logger = logging.getLogger(__name__)


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "user_id": str(n.user_id),
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data,
        "is_read": n.is_read,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def create_notification(
    session: Session,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: dict | None = None,
) -> Notification:
    row = Notification(
        user_id=user_id,
        type=str(type),
        title=title,
        message=message,
        data=data,
        is_read=False,
    )
    session.add(row)
    session.flush()
    payload = notification_to_dict(row)
    if realtime.hub.running:
        realtime.send_notification(user_id, payload)
    else:
        event_bus.publish_on_commit(
            session, event_bus.event("notification_created", user_id=str(user_id), notification=payload),
        )
    logger.debug("Notification %s (%s) for user %s", row.id, type, user_id)
    return row


# ---------------------------------------------------------------------------
# Typed helpers
# ---------------------------------------------------------------------------

def notify_promotion(session: Session, user_id: int, *, old_rank: str, new_rank: str) -> Notification:
    return create_notification(
        session, user_id, NotificationType.PROMOTION,
        "Promotion",
        f"Congratulations! You have been promoted from {old_rank} to {new_rank}.",
        {"oldRank": old_rank, "newRank": new_rank},
    )


def notify_demotion(session: Session, user_id: int, *, old_rank: str, new_rank: str) -> Notification:
    return create_notification(
        session, user_id, NotificationType.DEMOTION,
        "Demotion",
        f"You have been demoted from {old_rank} to {new_rank}.",
        {"oldRank": old_rank, "newRank": new_rank},
    )


def notify_sanction(session: Session, user_id: int, *, sanction_id: int, reason: str) -> Notification:
    return create_notification(
        session, user_id, NotificationType.SANCTION,
        "New sanction",
        f"You have received a sanction: {reason}",
        {"sanctionId": sanction_id},
    )


def notify_bonus(session: Session, user_id: int, *, amount: int, count: int = 1) -> Notification:
    label = "bonus payment" if count == 1 else f"{count} bonus payments"
    return create_notification(
        session, user_id, NotificationType.BONUS,
        "Bonus paid",
        f"Your {label} totalling ${amount:,} has been paid out.",
        {"amount": amount, "count": count},
    )


def notify_tuning(session: Session, user_id: int, *, report_id: int, vehicle: str) -> Notification:
    return create_notification(
        session, user_id, NotificationType.TUNING,
        "Tuning report completed",
        f"The tuning report for {vehicle} has been completed.",
        {"reportId": report_id},
    )


def notify_unit_change(session: Session, user_id: int, *, departments: str) -> Notification:
    return create_notification(
        session, user_id, NotificationType.UNIT_CHANGE,
        "Unit change",
        f"Your units have been updated: {departments}.",
        {"departments": departments},
    )


def notify_unit_promotion(session: Session, user_id: int, *, unit: str, position: str) -> Notification:
    return create_notification(
        session, user_id, NotificationType.UNIT_PROMOTION,
        "Unit promotion",
        f"You have been promoted to {position} in {unit}.",
        {"unit": unit, "position": position},
    )


def notify_calendar(session: Session, user_id: int, *, event_id: int, title: str, starts_in: int) -> Notification:
    return create_notification(
        session, user_id, NotificationType.CALENDAR,
        f"Reminder: {title}",
        f"'{title}' starts in {starts_in} minutes.",
        {"eventId": event_id},
    )


def notify_general(session: Session, user_id: int, title: str, message: str, data: dict | None = None) -> Notification:
    return create_notification(session, user_id, NotificationType.GENERAL, title, message, data)
