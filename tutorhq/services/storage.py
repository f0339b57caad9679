"""File uploads to Supabase Storage.

Handlers that accept files are plain ``def`` endpoints: the supabase client is
synchronous, so FastAPI runs them in its threadpool.
"""
import logging
import re
from urllib.parse import quote

from fastapi import HTTPException, UploadFile, status

from tutorhq.auth.supabase_client import require_supabase_admin
from tutorhq.core import config
from tutorhq.database import new_id

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def safe_filename(filename: str | None, default: str = 'upload') -> str:
    return _UNSAFE_FILENAME_CHARS.sub('_', filename or default).strip('._') or default


def storage_path(owner_id: str, filename: str | None) -> str:
    return f'{owner_id}/{new_id()}-{safe_filename(filename)}'


def attachment_disposition(filename: str) -> str:
    """Content-Disposition with an ASCII fallback name plus the UTF-8 form (RFC 6266)."""
    fallback = safe_filename(filename, 'download')
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f'File exceeds the {limit // (1024 * 1024)} MB upload limit',
    )


def read_upload(file: UploadFile, limit: int | None = None) -> bytes:
    """Read an uploaded file, refusing anything over ``limit`` bytes without buffering it all."""
    limit = config.MAX_UPLOAD_BYTES if limit is None else limit
    if file.size is not None and file.size > limit:
        raise _too_large(limit)
    contents = file.file.read(limit + 1)
    if len(contents) > limit:
        raise _too_large(limit)
    if not contents:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Uploaded file is empty')
    return contents


def upload_to_bucket(bucket_name: str, path: str, contents: bytes, content_type: str | None) -> str:
    """Store ``contents`` at ``path`` and return its public URL."""
    bucket = require_supabase_admin().storage.from_(bucket_name)
    try:
        bucket.upload(path, contents, {'content-type': content_type or 'application/octet-stream'})
        return bucket.get_public_url(path)
    except Exception as exc:
        logger.exception('Upload of %s to bucket %s failed', path, bucket_name)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail='File upload failed') from exc


def remove_from_bucket(bucket_name: str, path: str) -> None:
    bucket = require_supabase_admin().storage.from_(bucket_name)
    try:
        bucket.remove([path])
    except Exception as exc:
        logger.exception('Removal of %s from bucket %s failed', path, bucket_name)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail='File removal failed') from exc
