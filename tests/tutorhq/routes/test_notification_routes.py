from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from tutorhq.core.clock import utcnow
from tutorhq.models.notification import Notification
from tutorhq.routes.notification_routes import (
    UpdatePreferencesRequest,
    clear_notifications,
    delete_notification,
    get_preferences,
    get_unread_count,
    list_notifications,
    mark_all_read,
    mark_read,
    update_preferences,
)
from tutorhq.services.notifications import notify


def _seed(db, user, count: int, notification_type: str = 'class_scheduled'):
    items = [notify(db, user.id, notification_type, f'Title {index}', 'Body') for index in range(count)]
    db.commit()
    return items


def _list(db, user, **params):
    query = dict(page=1, limit=20, unread_only=False, notification_type=None)
    query.update(params)
    return list_notifications(db=db, current_user=user, **query)


def test_list_notifications_paginates_and_counts_unread(db, make_user) -> None:
    user = make_user('student')
    _seed(db, user, 5)

    result = _list(db, user, page=2, limit=2)

    assert len(result['notifications']) == 2
    assert result['pagination'] == {'page': 2, 'limit': 2, 'total': 5, 'totalPages': 3}
    assert result['unreadCount'] == 5


def test_list_notifications_filters_type_and_unread(db, make_user) -> None:
    user = make_user('student')
    first = _seed(db, user, 2, 'test_graded')[0]
    _seed(db, user, 1, 'goal_completed')
    mark_read(first.id, db=db, current_user=user)

    unread_tests = _list(db, user, unread_only=True, notification_type='test_graded')

    assert unread_tests['pagination']['total'] == 1
    assert unread_tests['unreadCount'] == 2


def test_list_notifications_rejects_unknown_type(db, make_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _list(db, make_user('student'), notification_type='test')

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid notification type'


def test_expired_notifications_are_hidden(db, make_user) -> None:
    user = make_user('student')
    notify(db, user.id, 'class_cancelled', 'Old', 'Body', expires_at=utcnow() - timedelta(hours=1))
    notify(db, user.id, 'class_cancelled', 'Current', 'Body', expires_at=utcnow() + timedelta(hours=1))
    db.commit()

    result = _list(db, user)

    assert [item.title for item in result['notifications']] == ['Current']
    assert result['unreadCount'] == 1
    assert get_unread_count(db=db, current_user=user) == {'unreadCount': 1}


def test_notifications_are_private_to_their_owner(db, make_user) -> None:
    owner = make_user('student')
    item = _seed(db, owner, 1)[0]

    with pytest.raises(HTTPException) as exception_info:
        mark_read(item.id, db=db, current_user=make_user('student'))
    assert exception_info.value.status_code == 404

    with pytest.raises(HTTPException):
        delete_notification(item.id, db=db, current_user=make_user('student'))


def test_mark_read_sets_timestamp(db, make_user) -> None:
    user = make_user('student')
    item = _seed(db, user, 1)[0]

    result = mark_read(item.id, db=db, current_user=user)['notification']

    assert result.is_read is True
    assert result.read_at is not None
    assert get_unread_count(db=db, current_user=user) == {'unreadCount': 0}


def test_mark_all_read_and_clear_read_only(db, make_user) -> None:
    user = make_user('student')
    _seed(db, user, 3)

    assert mark_all_read(db=db, current_user=user)['updated'] == 3
    _seed(db, user, 1)

    assert clear_notifications(read_only=True, db=db, current_user=user)['deleted'] == 3
    assert db.query(Notification).filter(Notification.user_id == user.id).count() == 1
    assert clear_notifications(read_only=False, db=db, current_user=user)['deleted'] == 1


def test_preferences_are_created_with_defaults(db, make_user) -> None:
    user = make_user('parent')

    preferences = get_preferences(db=db, current_user=user)['preferences']

    assert preferences.in_app_classes is True
    assert preferences.email_goals is False
    assert preferences.digest_time == '08:00'


def test_muted_category_is_not_delivered(db, make_user) -> None:
    user = make_user('student')
    update_preferences(UpdatePreferencesRequest(inAppClasses=False), db=db, current_user=user)

    assert notify(db, user.id, 'class_cancelled', 'Muted', 'Body') is None
    assert notify(db, user.id, 'system', 'Always', 'Body') is not None


def test_preferences_reject_bad_clock_times() -> None:
    with pytest.raises(ValidationError) as exception_info:
        UpdatePreferencesRequest(quietHoursStart='25:00')

    assert 'times must use HH:MM format' in str(exception_info.value)
