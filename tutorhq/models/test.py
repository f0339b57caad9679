"""Test, test assignment and submission model definitions."""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id
from tutorhq.models.user import Student, Tutor


TEST_ASSIGNMENT_STATUSES = ('assigned', 'submitted', 'graded')


class Test(Base):
    """Represents a test authored by a tutor."""
    __tablename__ = "tests"
    __test__ = False  # keep pytest from collecting the model

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    subject = Column(String, index=True)
    description = Column(String)
    tutor_id = Column(String(36), ForeignKey("tutors.id", ondelete="CASCADE"), index=True)
    test_type = Column(String)
    questions = Column(JSON, default=list)
    total_points = Column(Float)
    duration = Column(Integer)
    due_date = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    tutor = relationship(Tutor, lazy="joined")
    assignments = relationship("TestAssignment", back_populates="test", cascade="all, delete-orphan")


class TestAssignment(Base):
    """A test handed to one student."""
    __tablename__ = "test_assignments"
    __test__ = False

    id = Column(String(36), primary_key=True, default=new_id)
    test_id = Column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), index=True)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), index=True)
    due_date = Column(DateTime)
    status = Column(String, default='assigned')
    assigned_at = Column(DateTime, default=utcnow)

    test = relationship(Test, back_populates="assignments", lazy="joined")
    student = relationship(Student)
    submissions = relationship("TestSubmission", back_populates="assignment", cascade="all, delete-orphan")


class TestSubmission(Base):
    __tablename__ = "test_submissions"
    __test__ = False

    id = Column(String(36), primary_key=True, default=new_id)
    assignment_id = Column(String(36), ForeignKey("test_assignments.id", ondelete="CASCADE"), index=True)
    answers = Column(JSON)
    score = Column(Float)
    feedback = Column(String)
    submitted_at = Column(DateTime, default=utcnow)
    graded_at = Column(DateTime)
    graded_by = Column(String(36), ForeignKey("profiles.id"))

    assignment = relationship(TestAssignment, back_populates="submissions")
