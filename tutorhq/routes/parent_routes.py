import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, require_role
from tutorhq.core.clock import utcnow
from tutorhq.core.schemas import CamelModel
from tutorhq.database import get_db
from tutorhq.models.goal import Goal
from tutorhq.models.test import TestAssignment
from tutorhq.models.tutoring_class import ATTENDANCE_STATUSES, ClassEnrollment, TutoringClass
from tutorhq.models.user import ParentStudent, Profile, Student
from tutorhq.routes.class_routes import ClassResponse
from tutorhq.routes.user_routes import StudentResponse
from tutorhq.services.access import is_parent_of
from tutorhq.services.progress import attendance_rate, class_attendance, collect_progress
from tutorhq.services.reports import overall_average

router = APIRouter(tags=['parents'])
logger = logging.getLogger(__name__)


class LinkChildRequest(CamelModel):
    child_email: str = Field(min_length=3)


def get_linked_child(db: Session, current_user: CurrentUser, child_id: str) -> Student:
    if not is_parent_of(db, current_user.id, child_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='This student is not linked to your account')
    child = db.get(Student, child_id)
    if child is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found')
    return child


def linked_children(db: Session, parent_id: str) -> list[Student]:
    links = db.query(ParentStudent).filter(ParentStudent.parent_id == parent_id).all()
    return [link.student for link in links if link.student is not None]


def upcoming_classes(db: Session, student_id: str) -> list[TutoringClass]:
    return db.query(TutoringClass).join(ClassEnrollment).filter(
        ClassEnrollment.student_id == student_id,
        TutoringClass.start_time >= utcnow(),
        TutoringClass.status == 'scheduled',
    ).order_by(TutoringClass.start_time.asc()).all()


@router.get('/dashboard')
def dashboard(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('parent'))):
    summaries = []
    for child in linked_children(db, current_user.id):
        pending_tests = db.query(TestAssignment).filter(
            TestAssignment.student_id == child.id,
            TestAssignment.status == 'assigned',
        ).count()
        active_goals = db.query(Goal).filter(Goal.student_id == child.id, Goal.status != 'completed').count()
        summaries.append({
            'child': StudentResponse.model_validate(child),
            'upcomingClasses': len(upcoming_classes(db, child.id)),
            'pendingTests': pending_tests,
            'activeGoals': active_goals,
            'attendanceRate': attendance_rate([item.attendance_status for item in class_attendance(db, child.id)]),
        })
    return {'children': summaries}


@router.get('/children')
def list_children(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('parent'))):
    return {'children': [StudentResponse.model_validate(child) for child in linked_children(db, current_user.id)]}


@router.post('/children', status_code=status.HTTP_201_CREATED)
def link_child(
    data: LinkChildRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('parent')),
):
    email = data.child_email.strip().lower()
    profile = db.query(Profile).filter(func.lower(Profile.email) == email).first()
    if profile is None or profile.role != 'student':
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='No student account found with that email')
    if is_parent_of(db, current_user.id, profile.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='This student is already linked to your account')

    child = db.get(Student, profile.id)
    if child is None:
        child = Student(id=profile.id)
        db.add(child)
        db.flush()
    db.add(ParentStudent(parent_id=current_user.id, student_id=profile.id, relationship_type='parent'))
    db.commit()
    db.refresh(child)
    logger.info('Parent %s linked student %s', current_user.id, profile.id)
    return {'message': 'Child linked successfully', 'child': StudentResponse.model_validate(child)}


@router.delete('/children/{child_id}')
def unlink_child(
    child_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('parent')),
):
    removed = db.query(ParentStudent).filter(
        ParentStudent.parent_id == current_user.id,
        ParentStudent.student_id == child_id,
    ).delete(synchronize_session=False)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Link not found')
    db.commit()
    return {'message': 'Child unlinked successfully'}


@router.get('/children/{child_id}/performance')
def child_performance(
    child_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('parent')),
):
    child = get_linked_child(db, current_user, child_id)
    subjects = collect_progress(db, child.id)
    return {
        'subjects': [asdict(subject) for subject in subjects],
        'overallAverage': overall_average(subjects),
        'attendanceRate': attendance_rate([item.attendance_status for item in class_attendance(db, child.id)]),
    }


@router.get('/children/{child_id}/schedule')
def child_schedule(
    child_id: str,
    include_past: bool = Query(default=False, alias='includePast'),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('parent')),
):
    child = get_linked_child(db, current_user, child_id)
    if include_past:
        classes = db.query(TutoringClass).join(ClassEnrollment).filter(
            ClassEnrollment.student_id == child.id,
        ).order_by(TutoringClass.start_time.asc()).all()
    else:
        classes = upcoming_classes(db, child.id)
    return {'classes': [ClassResponse.model_validate(item) for item in classes]}


@router.get('/children/{child_id}/attendance')
def child_attendance(
    child_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('parent')),
):
    child = get_linked_child(db, current_user, child_id)
    enrollments = sorted(
        class_attendance(db, child.id),
        key=lambda item: item.tutoring_class.start_time or item.enrolled_at,
        reverse=True,
    )
    records = [
        {
            'enrollmentId': enrollment.id,
            'classId': enrollment.class_id,
            'title': enrollment.tutoring_class.title,
            'subject': enrollment.tutoring_class.subject,
            'startTime': enrollment.tutoring_class.start_time,
            'attendanceStatus': enrollment.attendance_status,
        }
        for enrollment in enrollments
    ]
    statuses = [enrollment.attendance_status for enrollment in enrollments]
    summary = {value: statuses.count(value) for value in ATTENDANCE_STATUSES}
    summary['attendanceRate'] = attendance_rate(statuses)
    return {'records': records, 'summary': summary}
