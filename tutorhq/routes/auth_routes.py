import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from supabase import AuthError, Client

from tutorhq.auth.dependencies import CurrentUser, get_current_user
from tutorhq.auth.supabase_client import dump_session, get_supabase, get_supabase_admin, require_supabase_admin
from tutorhq.core import config
from tutorhq.core.schemas import CamelModel
from tutorhq.database import get_db
from tutorhq.models.user import ROLES, Profile, Student, Tutor
from tutorhq.routes.user_routes import profile_with_role_data

router = APIRouter(tags=['auth'])
logger = logging.getLogger(__name__)

# Roles that need an administrator's approval before they are trusted.
ROLES_REQUIRING_APPROVAL = {'tutor', 'admin'}


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if '@' not in normalized:
        raise ValueError('email must be a valid email address')
    return normalized


class SignupRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)
    full_name: str = Field(min_length=1)
    role: str

    grade_level: str | None = None
    school: str | None = None
    parent_id: str | None = None
    learning_goals: str | None = None

    subjects: list[str] | None = None
    qualifications: str | None = None
    experience_years: int | None = Field(default=None, ge=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    availability: dict | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ROLES:
            raise ValueError(f"role must be one of: {', '.join(ROLES)}")
        return normalized


class LoginRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class RefreshRequest(CamelModel):
    refresh_token: str | None = None


class ResetPasswordRequest(CamelModel):
    email: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class UpdatePasswordRequest(CamelModel):
    new_password: str = Field(min_length=1)


def _create_role_record(db: Session, user_id: str, data: SignupRequest) -> None:
    if data.role == 'student':
        record = Student(
            id=user_id,
            grade_level=data.grade_level,
            school=data.school,
            parent_id=data.parent_id,
            learning_goals=data.learning_goals,
        )
    elif data.role == 'tutor':
        record = Tutor(
            id=user_id,
            subjects=data.subjects or [],
            qualifications=data.qualifications,
            experience_years=data.experience_years,
            hourly_rate=data.hourly_rate,
            availability=data.availability or {},
        )
    else:
        return

    try:
        with db.begin_nested():
            db.merge(record)
    except SQLAlchemyError:
        logger.warning('Could not create %s record for %s', data.role, user_id, exc_info=True)


@router.post('/signup', status_code=status.HTTP_201_CREATED)
def signup(data: SignupRequest, db: Session = Depends(get_db), supabase: Client = Depends(get_supabase)):
    try:
        auth_response = supabase.auth.sign_up({
            'email': data.email,
            'password': data.password,
            'options': {'data': {'full_name': data.full_name, 'role': data.role}},
        })
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    user = auth_response.user
    if user is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Signup failed')

    profile = db.get(Profile, user.id) or Profile(id=user.id)
    profile.email = data.email
    profile.full_name = data.full_name
    profile.role = data.role
    profile.status = 'pending' if data.role in ROLES_REQUIRING_APPROVAL else 'approved'
    db.add(profile)
    db.flush()

    _create_role_record(db, user.id, data)
    db.commit()
    logger.info('User %s signed up as %s (%s)', user.id, data.role, profile.status)

    return {
        'message': 'User created successfully',
        'user': {'id': user.id, 'email': user.email or data.email, 'role': data.role, 'status': profile.status},
        'session': dump_session(auth_response.session),
    }


@router.post('/login')
def login(data: LoginRequest, db: Session = Depends(get_db), supabase: Client = Depends(get_supabase)):
    try:
        auth_response = supabase.auth.sign_in_with_password({'email': data.email, 'password': data.password})
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    user = auth_response.user
    profile = db.get(Profile, user.id) if user is not None else None
    if profile is None:
        logger.warning('Login for %s has no profile row', data.email)
        user_data = {'id': user.id if user else None, 'email': data.email}
    else:
        user_data = profile_with_role_data(db, profile)

    return {
        'message': 'Login successful',
        'user': user_data,
        'session': dump_session(auth_response.session),
    }


@router.post('/logout')
def logout(current_user: CurrentUser = Depends(get_current_user), supabase: Client = Depends(get_supabase)):
    admin = get_supabase_admin()
    try:
        if admin is not None:
            admin.auth.admin.sign_out(current_user.token)
        else:
            supabase.auth.sign_out()
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {'message': 'Logout successful'}


@router.get('/me')
def me(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return {'user': profile_with_role_data(db, current_user.profile)}


@router.post('/refresh')
def refresh(data: RefreshRequest, supabase: Client = Depends(get_supabase)):
    if not data.refresh_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Refresh token is required')
    try:
        auth_response = supabase.auth.refresh_session(data.refresh_token)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return {'message': 'Token refreshed successfully', 'session': dump_session(auth_response.session)}


@router.post('/reset-password')
def reset_password(data: ResetPasswordRequest, supabase: Client = Depends(get_supabase)):
    try:
        supabase.auth.reset_password_for_email(
            data.email,
            {'redirect_to': f'{config.CLIENT_URL.rstrip("/")}/reset-password'},
        )
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {'message': 'Password reset email sent'}


@router.post('/update-password')
def update_password(data: UpdatePasswordRequest, current_user: CurrentUser = Depends(get_current_user)):
    admin = require_supabase_admin()
    try:
        admin.auth.admin.update_user_by_id(current_user.id, {'password': data.new_password})
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.info('Password updated for %s', current_user.id)
    return {'message': 'Password updated successfully'}
