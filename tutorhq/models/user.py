"""User model definitions.

A Profile extends the hosted auth identity (same id) with role and display
metadata. Students and tutors carry an additional role row keyed by the same
id; parents are linked to students through ParentStudent.
"""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id


ROLES = ('student', 'tutor', 'parent', 'admin')
ACCOUNT_STATUSES = ('pending', 'approved', 'rejected')


class Profile(Base):
    """Represents an application user."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String, index=True)  # student/tutor/parent/admin
    status = Column(String, default='approved')  # pending/approved/rejected
    rejection_reason = Column(String)
    avatar_url = Column(String)
    phone = Column(String)
    bio = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Student(Base):
    __tablename__ = "students"

    id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    grade_level = Column(String)
    school = Column(String)
    parent_id = Column(String(36), ForeignKey("profiles.id"))
    learning_goals = Column(String)

    profile = relationship(Profile, foreign_keys=[id], lazy="joined")


class Tutor(Base):
    __tablename__ = "tutors"

    id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    subjects = Column(JSON, default=list)
    qualifications = Column(String)
    experience_years = Column(Integer)
    hourly_rate = Column(Float)
    rating = Column(Float)
    availability = Column(JSON, default=dict)

    profile = relationship(Profile, lazy="joined")


class ParentStudent(Base):
    __tablename__ = "parent_students"
    __table_args__ = (UniqueConstraint("parent_id", "student_id", name="uq_parent_student"),)

    id = Column(String(36), primary_key=True, default=new_id)
    parent_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), index=True)
    relationship_type = Column("relationship", String, default="parent")
    created_at = Column(DateTime, default=utcnow)

    student = relationship(Student, lazy="joined")
    parent = relationship(Profile, foreign_keys=[parent_id])
