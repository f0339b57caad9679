import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user
from tutorhq.core.clock import utcnow
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.notification import NOTIFICATION_TYPES, Notification
from tutorhq.services.notifications import active_notifications, get_or_create_preferences

router = APIRouter(tags=['notifications'])

_CLOCK_TIME_FORMAT = '%H:%M'


class NotificationResponse(OrmModel):
    id: str
    user_id: str
    type: str
    title: str
    message: str
    entity_type: str | None = None
    entity_id: str | None = None
    action_url: str | None = None
    action_label: str | None = None
    metadata: dict | None = Field(default=None, validation_alias='extra')
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime | None = None
    expires_at: datetime | None = None


class PreferencesResponse(OrmModel):
    user_id: str
    in_app_assignments: bool = True
    in_app_tests: bool = True
    in_app_classes: bool = True
    in_app_goals: bool = True
    in_app_materials: bool = True
    in_app_messages: bool = True
    in_app_announcements: bool = True
    email_assignments: bool = True
    email_tests: bool = True
    email_classes: bool = True
    email_goals: bool = False
    email_materials: bool = False
    email_messages: bool = True
    email_announcements: bool = True
    email_digest: bool = False
    digest_time: str | None = None
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None


class UpdatePreferencesRequest(CamelModel):
    in_app_assignments: bool | None = None
    in_app_tests: bool | None = None
    in_app_classes: bool | None = None
    in_app_goals: bool | None = None
    in_app_materials: bool | None = None
    in_app_messages: bool | None = None
    in_app_announcements: bool | None = None
    email_assignments: bool | None = None
    email_tests: bool | None = None
    email_classes: bool | None = None
    email_goals: bool | None = None
    email_materials: bool | None = None
    email_messages: bool | None = None
    email_announcements: bool | None = None
    email_digest: bool | None = None
    digest_time: str | None = None
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None

    @field_validator('digest_time', 'quiet_hours_start', 'quiet_hours_end')
    @classmethod
    def validate_clock_time(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            datetime.strptime(value, _CLOCK_TIME_FORMAT)
        except ValueError as exc:
            raise ValueError('times must use HH:MM format') from exc
        return value


def unread_count(db: Session, user_id: str) -> int:
    return active_notifications(db, user_id).filter(Notification.is_read.is_(False)).count()


def get_own_notification(db: Session, notification_id: str, current_user: CurrentUser) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id,
    ).first()
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Notification not found')
    return notification


@router.get('')
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
    notification_type: str | None = Query(default=None, alias='type'),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if notification_type and notification_type not in NOTIFICATION_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid notification type')

    query = active_notifications(db, current_user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    if notification_type:
        query = query.filter(Notification.type == notification_type)

    total = query.count()
    notifications = query.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        'notifications': [NotificationResponse.model_validate(item) for item in notifications],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'totalPages': math.ceil(total / limit) if total else 0,
        },
        'unreadCount': unread_count(db, current_user.id),
    }


@router.get('/unread-count')
def get_unread_count(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return {'unreadCount': unread_count(db, current_user.id)}


@router.put('/read-all')
def mark_all_read(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    updated = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.is_read.is_(False),
    ).update({Notification.is_read: True, Notification.read_at: utcnow()}, synchronize_session=False)
    db.commit()
    return {'message': 'All notifications marked as read', 'updated': updated}


@router.delete('/clear')
def clear_notifications(
    read_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    query = db.query(Notification).filter(Notification.user_id == current_user.id)
    if read_only:
        query = query.filter(Notification.is_read.is_(True))
    deleted = query.delete(synchronize_session=False)
    db.commit()
    return {'message': 'Notifications cleared', 'deleted': deleted}


@router.get('/preferences')
def get_preferences(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    preferences = get_or_create_preferences(db, current_user.id)
    db.commit()
    db.refresh(preferences)
    return {'preferences': PreferencesResponse.model_validate(preferences)}


@router.put('/preferences')
def update_preferences(
    data: UpdatePreferencesRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    preferences = get_or_create_preferences(db, current_user.id)
    for column, value in data.updates().items():
        if value is not None:
            setattr(preferences, column, value)
    db.commit()
    db.refresh(preferences)
    return {'message': 'Preferences updated successfully', 'preferences': PreferencesResponse.model_validate(preferences)}


@router.put('/{notification_id}/read')
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    notification = get_own_notification(db, notification_id, current_user)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return {'notification': NotificationResponse.model_validate(notification)}


@router.delete('/{notification_id}')
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    notification = get_own_notification(db, notification_id, current_user)
    db.delete(notification)
    db.commit()
    return {'message': 'Notification deleted successfully'}
