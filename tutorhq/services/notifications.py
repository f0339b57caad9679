"""In-app notification delivery.

Other route modules call ``notify`` as a side effect of state changes (a test
assigned, a submission graded, an account approved). Rows are added to the
caller's session; committing stays with the caller so the notification lands
in the same transaction as the change it reports.
"""
import logging
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from tutorhq.core.clock import utcnow
from tutorhq.models.notification import Notification, NotificationPreference

logger = logging.getLogger(__name__)

# Event type -> in_app_<category> switch; types missing here are always delivered.
PREFERENCE_BY_TYPE = {
    'assignment_created': 'assignments',
    'assignment_due_soon': 'assignments',
    'assignment_overdue': 'assignments',
    'assignment_graded': 'assignments',
    'test_available': 'tests',
    'test_graded': 'tests',
    'class_scheduled': 'classes',
    'class_starting_soon': 'classes',
    'class_cancelled': 'classes',
    'goal_deadline': 'goals',
    'goal_completed': 'goals',
    'material_uploaded': 'materials',
    'message_received': 'messages',
    'announcement': 'announcements',
}


def get_or_create_preferences(db: Session, user_id: str) -> NotificationPreference:
    preferences = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if preferences is None:
        preferences = NotificationPreference(user_id=user_id)
        db.add(preferences)
        db.flush()
    return preferences


def wants_in_app(db: Session, user_id: str, notification_type: str) -> bool:
    category = PREFERENCE_BY_TYPE.get(notification_type)
    if category is None:
        return True
    preferences = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if preferences is None:
        return True
    return bool(getattr(preferences, f'in_app_{category}', True))


def active_notifications(db: Session, user_id: str) -> Query:
    """The user's notifications that have not passed their expiry time."""
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        or_(Notification.expires_at.is_(None), Notification.expires_at > utcnow()),
    )


def notify(
    db: Session,
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action_url: str | None = None,
    action_label: str | None = None,
    expires_at: datetime | None = None,
) -> Notification | None:
    if not user_id:
        return None
    if not wants_in_app(db, user_id, notification_type):
        logger.debug('Notification %s muted by preferences for %s', notification_type, user_id)
        return None

    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
        action_url=action_url,
        action_label=action_label,
        expires_at=expires_at,
    )
    db.add(notification)
    return notification


def notify_many(db: Session, user_ids, notification_type: str, title: str, message: str, **kwargs) -> int:
    delivered = 0
    for user_id in dict.fromkeys(user_ids):
        if notify(db, user_id, notification_type, title, message, **kwargs) is not None:
            delivered += 1
    return delivered
