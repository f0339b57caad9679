import uuid
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from tutorhq.core import config


_connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, connect_args=_connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_schema_checked = False


def new_id() -> str:
    return str(uuid.uuid4())


def get_db():
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def ensure_schema() -> None:
    """Add columns introduced after a table was first created."""
    global _schema_checked

    if _schema_checked:
        return

    with _schema_lock:
        if _schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())
        migration_steps = [
            ('profiles', 'status', "ALTER TABLE profiles ADD COLUMN status VARCHAR DEFAULT 'approved'"),
            ('profiles', 'rejection_reason', 'ALTER TABLE profiles ADD COLUMN rejection_reason VARCHAR'),
            ('classes', 'max_students', 'ALTER TABLE classes ADD COLUMN max_students INTEGER'),
        ]

        with engine.begin() as connection:
            for table_name, column_name, statement in migration_steps:
                if table_name not in table_names:
                    continue
                existing_columns = {column['name'] for column in inspector.get_columns(table_name)}
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            if 'classes' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_classes_tutor_start ON classes(tutor_id, start_time)')
                )
            if 'notifications' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_notifications_user_read ON notifications(user_id, is_read)')
                )

        _schema_checked = True
