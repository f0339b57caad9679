from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from tutorhq.auth import jwt_handler
from tutorhq.database import get_db
from tutorhq.models.user import Profile

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str
    email: str
    token: str
    profile: Profile

    @property
    def role(self) -> str:
        return self.profile.role

    @property
    def is_admin(self) -> bool:
        return self.profile.role == 'admin'


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={'WWW-Authenticate': 'Bearer'},
    )


def _resolve_user(credentials: HTTPAuthorizationCredentials | None, db: Session) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != 'bearer' or not credentials.credentials:
        raise _unauthorized('Missing or invalid authorization header')

    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise _unauthorized('Invalid or expired token') from exc

    user_id = payload.get('sub')
    if not user_id:
        raise _unauthorized('Invalid token subject')

    profile = db.get(Profile, user_id)
    if profile is None:
        raise _unauthorized('User profile not found')
    if profile.status == 'rejected':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Your account has been rejected. Contact an administrator.',
        )

    return CurrentUser(id=user_id, email=payload.get('email') or profile.email or '', token=token, profile=profile)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> CurrentUser:
    return _resolve_user(credentials, db)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> CurrentUser | None:
    if credentials is None:
        return None
    try:
        return _resolve_user(credentials, db)
    except HTTPException:
        return None


def require_role(*allowed_roles: str):
    """Dependency factory: the caller's profile role must be one of allowed_roles."""

    def checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role(s): {', '.join(allowed_roles)}",
            )
        return current_user

    return checker


def require_ownership(param_name: str):
    """Dependency factory: the path parameter must be the caller's own id (admins bypass)."""

    def checker(request: Request, current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        resource_user_id = request.path_params.get(param_name)
        if resource_user_id != current_user.id and not current_user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='You can only access your own resources',
            )
        return current_user

    return checker
