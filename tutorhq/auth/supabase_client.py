"""Supabase clients for the auth and storage calls delegated to the hosted service.

The anon client keeps the signed-in session in memory, so a fresh one is
built per request. The service-role client is stateless and shared.
"""
import logging

from fastapi import HTTPException, status
from supabase import Client, create_client

from tutorhq.core import config

logger = logging.getLogger(__name__)

_admin_client: Client | None = None


def get_supabase() -> Client:
    if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Authentication service is not configured.',
        )
    return create_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY)


def get_supabase_admin() -> Client | None:
    global _admin_client

    if _admin_client is not None:
        return _admin_client
    if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
        return None
    try:
        _admin_client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as exc:
        logger.warning('Supabase admin client unavailable: %s: %s', exc.__class__.__name__, str(exc))
        return None
    return _admin_client


def require_supabase_admin() -> Client:
    client = get_supabase_admin()
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Admin service is not configured.',
        )
    return client


def dump_session(session) -> dict | None:
    """JSON-ready view of a gotrue Session (or None)."""
    if session is None:
        return None
    if hasattr(session, 'model_dump'):
        return session.model_dump(mode='json')
    return dict(session)
