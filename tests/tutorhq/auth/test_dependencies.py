from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from tutorhq.auth.dependencies import get_current_user, get_optional_user, require_ownership, require_role
from tutorhq.auth.jwt_handler import create_access_token, decode_access_token


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trip_keeps_supabase_claims() -> None:
    payload = decode_access_token(create_access_token('user-1', email='a@example.com'))

    assert payload['sub'] == 'user-1'
    assert payload['email'] == 'a@example.com'
    assert payload['aud'] == 'authenticated'


def test_get_current_user_requires_authorization_header(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=None, db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Missing or invalid authorization header'


def test_get_current_user_rejects_expired_token(db, make_user) -> None:
    user = make_user('student')
    token = create_access_token(user.id, expires_minutes=-5)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer(token), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid or expired token'


def test_get_current_user_rejects_garbage_token(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer('not-a-jwt'), db=db)

    assert exception_info.value.detail == 'Invalid or expired token'


def test_get_current_user_requires_profile(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer(create_access_token('ghost')), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'User profile not found'


def test_get_current_user_attaches_profile(db, make_user) -> None:
    user = make_user('tutor')

    current_user = get_current_user(credentials=_bearer(create_access_token(user.id, email=user.email)), db=db)

    assert current_user.id == user.id
    assert current_user.role == 'tutor'
    assert current_user.email == user.email
    assert not current_user.is_admin


def test_get_current_user_blocks_rejected_accounts(db, make_user) -> None:
    user = make_user('tutor', status='rejected')

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer(create_access_token(user.id)), db=db)

    assert exception_info.value.status_code == 403


def test_get_current_user_allows_pending_accounts(db, make_user) -> None:
    user = make_user('tutor', status='pending')

    current_user = get_current_user(credentials=_bearer(create_access_token(user.id)), db=db)

    assert current_user.profile.status == 'pending'


def test_get_optional_user_returns_none_for_bad_token(db) -> None:
    assert get_optional_user(credentials=None, db=db) is None
    assert get_optional_user(credentials=_bearer('nope'), db=db) is None


def test_require_role_lists_allowed_roles(make_user) -> None:
    checker = require_role('tutor', 'admin')

    with pytest.raises(HTTPException) as exception_info:
        checker(current_user=make_user('student'))

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Access denied. Required role(s): tutor, admin'


def test_require_role_passes_matching_role(make_user) -> None:
    tutor = make_user('tutor')

    assert require_role('tutor')(current_user=tutor) is tutor


def test_require_ownership_compares_path_parameter(make_user) -> None:
    checker = require_ownership('user_id')
    student = make_user('student')
    admin = make_user('admin')

    assert checker(request=SimpleNamespace(path_params={'user_id': student.id}), current_user=student) is student
    assert checker(request=SimpleNamespace(path_params={'user_id': student.id}), current_user=admin) is admin
    with pytest.raises(HTTPException) as exception_info:
        checker(request=SimpleNamespace(path_params={'user_id': 'someone-else'}), current_user=student)

    assert exception_info.value.detail == 'You can only access your own resources'
