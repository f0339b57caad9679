"""Relationship checks shared by the student-facing routes."""

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser
from tutorhq.models.tutoring_class import ClassEnrollment, TutoringClass
from tutorhq.models.user import ParentStudent


def is_parent_of(db: Session, parent_id: str, student_id: str) -> bool:
    link = db.query(ParentStudent.id).filter(
        ParentStudent.parent_id == parent_id,
        ParentStudent.student_id == student_id,
    ).first()
    return link is not None


def parent_ids(db: Session, student_id: str) -> list[str]:
    rows = db.query(ParentStudent.parent_id).filter(ParentStudent.student_id == student_id).all()
    return [parent_id for (parent_id,) in rows]


def is_tutor_of(db: Session, tutor_id: str, student_id: str) -> bool:
    enrollment = db.query(ClassEnrollment.id).join(TutoringClass).filter(
        TutoringClass.tutor_id == tutor_id,
        ClassEnrollment.student_id == student_id,
    ).first()
    return enrollment is not None


def is_enrolled(db: Session, student_id: str, class_id: str) -> bool:
    enrollment = db.query(ClassEnrollment.id).filter(
        ClassEnrollment.class_id == class_id,
        ClassEnrollment.student_id == student_id,
    ).first()
    return enrollment is not None


def enrolled_class_ids(db: Session, student_id: str) -> list[str]:
    rows = db.query(ClassEnrollment.class_id).filter(ClassEnrollment.student_id == student_id).all()
    return [class_id for (class_id,) in rows]


def can_view_student(db: Session, current_user: CurrentUser, student_id: str) -> bool:
    if current_user.id == student_id or current_user.is_admin:
        return True
    if current_user.role == 'parent':
        return is_parent_of(db, current_user.id, student_id)
    if current_user.role == 'tutor':
        return is_tutor_of(db, current_user.id, student_id)
    return False


def ensure_can_view_student(db: Session, current_user: CurrentUser, student_id: str) -> None:
    if not can_view_student(db, current_user, student_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You do not have access to this student',
        )
