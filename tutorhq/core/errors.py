import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


def validation_messages(errors) -> list[str]:
    """Flatten pydantic errors into one readable line per failing field."""
    messages: list[str] = []
    for error in errors:
        location = [str(part) for part in error.get('loc', ()) if part not in ('body', 'query', 'path')]
        field = '.'.join(location) or 'body'
        if error.get('type') == 'missing':
            messages.append(f'{field} is required')
            continue
        message = error.get('msg', 'is invalid')
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
            messages.append(message)
            continue
        messages.append(f'{field}: {message}')
    return messages


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'detail': 'Invalid request body', 'errors': validation_messages(exc.errors())},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error('Database error on %s %s: %s', request.method, request.url.path, exc.__class__.__name__)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={'detail': 'Database unavailable. Verify DATABASE_URL and database credentials.'},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
