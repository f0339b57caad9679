"""Goal and milestone model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id


GOAL_CATEGORIES = ('academic', 'homework', 'test_prep', 'skill_development', 'personal')
GOAL_STATUSES = ('not_started', 'in_progress', 'completed', 'overdue')


class Goal(Base):
    """A weekly goal a student sets for themselves."""
    __tablename__ = "goals"

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), index=True)
    title = Column(String, nullable=False)
    description = Column(String)
    category = Column(String, default='academic')
    status = Column(String, default='not_started')
    target_date = Column(Date, nullable=False)
    completed_at = Column(DateTime)
    week_number = Column(Integer, index=True)
    year = Column(Integer, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    milestones = relationship(
        "Milestone",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="Milestone.order_index",
    )


class Milestone(Base):
    __tablename__ = "goal_milestones"

    id = Column(String(36), primary_key=True, default=new_id)
    goal_id = Column(String(36), ForeignKey("goals.id", ondelete="CASCADE"), index=True)
    title = Column(String, nullable=False)
    is_completed = Column(Boolean, default=False)
    completed_at = Column(DateTime)
    order_index = Column(Integer, default=0)

    goal = relationship(Goal, back_populates="milestones")
