"""Class and enrollment model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id
from tutorhq.models.user import Student, Tutor


CLASS_STATUSES = ('scheduled', 'in_progress', 'completed', 'cancelled')
ATTENDANCE_STATUSES = ('pending', 'attended', 'absent', 'excused')


class TutoringClass(Base):
    """Represents a scheduled class run by a tutor."""
    __tablename__ = "classes"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False, index=True)
    description = Column(String)
    tutor_id = Column(String(36), ForeignKey("tutors.id", ondelete="SET NULL"), index=True)
    start_time = Column(DateTime, index=True)
    end_time = Column(DateTime)
    duration = Column(Integer)  # minutes
    meeting_url = Column(String)
    max_students = Column(Integer)
    is_group = Column(Boolean, default=False)
    status = Column(String, default='scheduled')
    created_at = Column(DateTime, default=utcnow)

    tutor = relationship(Tutor, lazy="joined")
    enrollments = relationship(
        "ClassEnrollment",
        back_populates="tutoring_class",
        cascade="all, delete-orphan",
    )


class ClassEnrollment(Base):
    """Links a student to a class."""
    __tablename__ = "class_enrollments"
    __table_args__ = (UniqueConstraint("class_id", "student_id", name="uq_class_student"),)

    id = Column(String(36), primary_key=True, default=new_id)
    class_id = Column(String(36), ForeignKey("classes.id", ondelete="CASCADE"), index=True)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), index=True)
    attendance_status = Column(String, default='pending')
    enrolled_at = Column(DateTime, default=utcnow)

    tutoring_class = relationship(TutoringClass, back_populates="enrollments")
    student = relationship(Student, lazy="joined")
