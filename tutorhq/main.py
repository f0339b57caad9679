import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from tutorhq.core import config
from tutorhq.core.clock import utcnow
from tutorhq.core.errors import register_error_handlers
from tutorhq.database import Base, engine, ensure_schema
from tutorhq.models import assignment, goal, material, notification, test, tutoring_class, user  # noqa: F401
from tutorhq.routes import (
    admin_routes,
    assignment_routes,
    auth_routes,
    class_routes,
    goal_routes,
    material_routes,
    notification_routes,
    parent_routes,
    report_routes,
    test_routes,
    user_routes,
)

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
config.validate_runtime_config()

app = FastAPI(title='TutorHQ API', debug=config.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)
register_error_handlers(app)

logger = logging.getLogger(__name__)

_started_at = time.monotonic()


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/api/health')
def health():
    return {
        'status': 'ok',
        'timestamp': utcnow().isoformat() + 'Z',
        'uptime': round(time.monotonic() - _started_at, 3),
    }


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(user_routes.router, prefix='/api/users')
app.include_router(class_routes.router, prefix='/api/classes')
app.include_router(test_routes.router, prefix='/api/tests')
app.include_router(assignment_routes.router, prefix='/api/assignments')
app.include_router(goal_routes.router, prefix='/api/goals')
app.include_router(material_routes.router, prefix='/api/materials')
app.include_router(notification_routes.router, prefix='/api/notifications')
app.include_router(admin_routes.router, prefix='/api/admin')
app.include_router(parent_routes.router, prefix='/api/parents')
app.include_router(report_routes.router, prefix='/api/reports')
