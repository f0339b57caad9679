from datetime import datetime, timedelta, timezone

import jwt

from tutorhq.core import config


def create_access_token(subject: str, email: str = '', expires_minutes: int | None = None) -> str:
    """Mint a token shaped like the ones Supabase Auth issues."""
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "email": email,
        "aud": config.JWT_AUDIENCE,
        "role": "authenticated",
        "exp": now + timedelta(minutes=expire_minutes),
        "iat": now,
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE,
    )
