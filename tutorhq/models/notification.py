"""Notification model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id


NOTIFICATION_TYPES = (
    'assignment_created',
    'assignment_due_soon',
    'assignment_overdue',
    'assignment_graded',
    'test_available',
    'test_graded',
    'class_scheduled',
    'class_starting_soon',
    'class_cancelled',
    'goal_deadline',
    'goal_completed',
    'material_uploaded',
    'message_received',
    'announcement',
    'system',
)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    entity_type = Column(String)
    entity_id = Column(String(36))
    action_url = Column(String)
    action_label = Column(String)
    extra = Column("metadata", JSON)
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, index=True)
    expires_at = Column(DateTime)


class NotificationPreference(Base):
    """Per-user delivery switches, one row per user."""
    __tablename__ = "notification_preferences"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True)
    in_app_assignments = Column(Boolean, default=True)
    in_app_tests = Column(Boolean, default=True)
    in_app_classes = Column(Boolean, default=True)
    in_app_goals = Column(Boolean, default=True)
    in_app_materials = Column(Boolean, default=True)
    in_app_messages = Column(Boolean, default=True)
    in_app_announcements = Column(Boolean, default=True)
    email_assignments = Column(Boolean, default=True)
    email_tests = Column(Boolean, default=True)
    email_classes = Column(Boolean, default=True)
    email_goals = Column(Boolean, default=False)
    email_materials = Column(Boolean, default=False)
    email_messages = Column(Boolean, default=True)
    email_announcements = Column(Boolean, default=True)
    email_digest = Column(Boolean, default=False)
    digest_time = Column(String, default='08:00')
    quiet_hours_start = Column(String, default='22:00')
    quiet_hours_end = Column(String, default='07:00')
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
