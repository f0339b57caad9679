"""Assignment model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id
from tutorhq.models.tutoring_class import TutoringClass


PUBLICATION_STATUSES = ('draft', 'published', 'archived')


class Assignment(Base):
    """Homework set for every student of a class."""
    __tablename__ = "assignments"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(String)
    instructions = Column(String)
    class_id = Column(String(36), ForeignKey("classes.id", ondelete="CASCADE"), index=True)
    tutor_id = Column(String(36), ForeignKey("tutors.id", ondelete="CASCADE"), index=True)
    total_marks = Column(Float, nullable=False)
    due_date = Column(DateTime, nullable=False)
    allow_late_submission = Column(Boolean, default=False)
    late_submission_penalty = Column(Float, default=0)  # percentage points
    status = Column(String, default='draft')
    created_at = Column(DateTime, default=utcnow)

    tutoring_class = relationship(TutoringClass, lazy="joined")
    submissions = relationship("AssignmentSubmission", back_populates="assignment", cascade="all, delete-orphan")


class AssignmentSubmission(Base):
    __tablename__ = "assignment_submissions"
    __table_args__ = (UniqueConstraint("assignment_id", "student_id", name="uq_assignment_student"),)

    id = Column(String(36), primary_key=True, default=new_id)
    assignment_id = Column(String(36), ForeignKey("assignments.id", ondelete="CASCADE"), index=True)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), index=True)
    file_url = Column(String)
    description = Column(String)
    answers = Column(JSON)
    submitted_at = Column(DateTime, default=utcnow)
    is_late = Column(Boolean, default=False)
    score = Column(Float)
    percentage = Column(Float)
    feedback = Column(String)
    graded_at = Column(DateTime)
    status = Column(String, default='submitted')

    assignment = relationship(Assignment, back_populates="submissions")
