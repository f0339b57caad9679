import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from supabase import AuthError

from tutorhq.auth.dependencies import CurrentUser, require_role
from tutorhq.auth.supabase_client import get_supabase_admin
from tutorhq.core.clock import as_naive_utc, utcnow
from tutorhq.core.schemas import CamelModel
from tutorhq.database import get_db
from tutorhq.models.notification import Notification, NotificationPreference
from tutorhq.models.test import TestSubmission
from tutorhq.models.tutoring_class import ClassEnrollment, TutoringClass
from tutorhq.models.user import ACCOUNT_STATUSES, ROLES, ParentStudent, Profile, Student, Tutor
from tutorhq.routes.class_routes import ClassListItemResponse, ClassResponse
from tutorhq.routes.user_routes import ProfileResponse
from tutorhq.services.notifications import notify

router = APIRouter(tags=['admin'])
logger = logging.getLogger(__name__)

DEFAULT_CLASS_MINUTES = 60


class RejectUserRequest(CamelModel):
    reason: str | None = None


class StudentTutorLinkRequest(CamelModel):
    student_id: str = Field(min_length=1)
    class_id: str = Field(min_length=1)


class StudentParentLinkRequest(CamelModel):
    student_id: str = Field(min_length=1)
    parent_id: str = Field(min_length=1)


class AssignTutorRequest(CamelModel):
    tutor_id: str = Field(min_length=1)
    class_id: str = Field(min_length=1)


class AdminCreateClassRequest(CamelModel):
    title: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    description: str | None = None
    tutor_id: str | None = None
    scheduled_at: datetime | None = None
    duration: int | None = Field(default=None, gt=0)
    max_students: int | None = Field(default=None, ge=1)
    meeting_url: str | None = None

    @field_validator('scheduled_at')
    @classmethod
    def normalize_scheduled_at(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)


def get_profile_or_404(db: Session, user_id: str) -> Profile:
    profile = db.get(Profile, user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
    return profile


def get_profile_with_role(db: Session, user_id: str, role: str) -> Profile:
    profile = db.get(Profile, user_id)
    if profile is None or profile.role != role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f'{role.capitalize()} not found')
    return profile


def get_class_or_404(db: Session, class_id: str) -> TutoringClass:
    tutoring_class = db.get(TutoringClass, class_id)
    if tutoring_class is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Class not found')
    return tutoring_class


def ensure_student_row(db: Session, profile: Profile) -> None:
    if db.get(Student, profile.id) is None:
        db.add(Student(id=profile.id))
        db.flush()


def ensure_tutor_row(db: Session, profile: Profile) -> None:
    if db.get(Tutor, profile.id) is None:
        db.add(Tutor(id=profile.id, subjects=[], availability={}))
        db.flush()


@router.get('/dashboard')
def dashboard(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('admin'))):
    role_counts = dict(db.query(Profile.role, func.count(Profile.id)).group_by(Profile.role).all())
    return {
        'totalUsers': db.query(Profile).count(),
        'pendingApprovals': db.query(Profile).filter(Profile.status == 'pending').count(),
        'totalStudents': role_counts.get('student', 0),
        'totalTutors': role_counts.get('tutor', 0),
        'totalParents': role_counts.get('parent', 0),
        'totalClasses': db.query(TutoringClass).count(),
    }


@router.get('/users')
def list_users(
    role: str | None = Query(default=None),
    account_status: str | None = Query(default=None, alias='status'),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    if role and role not in ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid role')
    if account_status and account_status not in ACCOUNT_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid status')

    query = db.query(Profile)
    if role:
        query = query.filter(Profile.role == role)
    if account_status:
        query = query.filter(Profile.status == account_status)
    if search and search.strip():
        pattern = f'%{search.strip().lower()}%'
        query = query.filter(or_(func.lower(Profile.full_name).like(pattern), func.lower(Profile.email).like(pattern)))

    users = query.order_by(Profile.created_at.desc()).all()
    return {'users': [ProfileResponse.model_validate(user) for user in users]}


@router.get('/users/pending')
def list_pending_users(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('admin'))):
    users = db.query(Profile).filter(Profile.status == 'pending').order_by(Profile.created_at.asc()).all()
    return {'users': [ProfileResponse.model_validate(user) for user in users]}


@router.patch('/users/{user_id}/approve')
def approve_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    profile = get_profile_or_404(db, user_id)
    profile.status = 'approved'
    profile.rejection_reason = None
    notify(db, user_id, 'system', 'Account approved', 'Your account has been approved. Welcome aboard!')
    db.commit()
    db.refresh(profile)
    logger.info('Admin %s approved user %s', current_user.id, user_id)
    return {'message': 'User approved successfully', 'user': ProfileResponse.model_validate(profile)}


@router.patch('/users/{user_id}/reject')
def reject_user(
    user_id: str,
    data: RejectUserRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='You cannot reject your own account')

    profile = get_profile_or_404(db, user_id)
    profile.status = 'rejected'
    profile.rejection_reason = data.reason
    message = 'Your account application was not approved.'
    if data.reason:
        message = f'{message} Reason: {data.reason}'
    notify(db, user_id, 'system', 'Account not approved', message)
    db.commit()
    db.refresh(profile)
    logger.info('Admin %s rejected user %s', current_user.id, user_id)
    return {'message': 'User rejected', 'user': ProfileResponse.model_validate(profile)}


@router.delete('/users/{user_id}')
def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='You cannot delete your own account')
    profile = get_profile_or_404(db, user_id)

    db.query(Student).filter(Student.parent_id == user_id).update(
        {Student.parent_id: None}, synchronize_session=False,
    )
    db.query(TestSubmission).filter(TestSubmission.graded_by == user_id).update(
        {TestSubmission.graded_by: None}, synchronize_session=False,
    )
    db.query(TutoringClass).filter(TutoringClass.tutor_id == user_id).update(
        {TutoringClass.tutor_id: None}, synchronize_session=False,
    )
    db.query(ClassEnrollment).filter(ClassEnrollment.student_id == user_id).delete(synchronize_session=False)
    db.query(ParentStudent).filter(
        or_(ParentStudent.parent_id == user_id, ParentStudent.student_id == user_id)
    ).delete(synchronize_session=False)
    db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
    db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).delete(synchronize_session=False)
    for model in (Student, Tutor):
        row = db.get(model, user_id)
        if row is not None:
            db.delete(row)
    db.flush()
    db.delete(profile)
    db.flush()

    # Local rows are flushed before the auth identity is removed.
    admin = get_supabase_admin()
    if admin is not None:
        try:
            admin.auth.admin.delete_user(user_id)
        except AuthError as exc:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    else:
        logger.warning('No Supabase admin client; auth identity for %s was left in place', user_id)

    db.commit()
    logger.info('Admin %s deleted user %s', current_user.id, user_id)
    return {'message': 'User deleted successfully'}


@router.post('/link-student-tutor', status_code=status.HTTP_201_CREATED)
def link_student_tutor(
    data: StudentTutorLinkRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    student = get_profile_with_role(db, data.student_id, 'student')
    tutoring_class = get_class_or_404(db, data.class_id)

    existing = db.query(ClassEnrollment).filter(
        ClassEnrollment.class_id == data.class_id,
        ClassEnrollment.student_id == data.student_id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Student is already enrolled in this class')

    ensure_student_row(db, student)
    db.add(ClassEnrollment(class_id=data.class_id, student_id=data.student_id, attendance_status='pending'))
    notify(
        db,
        data.student_id,
        'class_scheduled',
        'Enrolled in class',
        f'You have been enrolled in {tutoring_class.title}',
        entity_type='class',
        entity_id=tutoring_class.id,
    )
    db.commit()
    return {'message': 'Student linked to class successfully'}


@router.delete('/unlink-student-tutor')
def unlink_student_tutor(
    data: StudentTutorLinkRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    removed = db.query(ClassEnrollment).filter(
        ClassEnrollment.class_id == data.class_id,
        ClassEnrollment.student_id == data.student_id,
    ).delete(synchronize_session=False)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Enrollment not found')
    db.commit()
    return {'message': 'Student unlinked from class successfully'}


@router.post('/link-student-parent', status_code=status.HTTP_201_CREATED)
def link_student_parent(
    data: StudentParentLinkRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    student = get_profile_with_role(db, data.student_id, 'student')
    get_profile_with_role(db, data.parent_id, 'parent')

    existing = db.query(ParentStudent).filter(
        ParentStudent.parent_id == data.parent_id,
        ParentStudent.student_id == data.student_id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Student is already linked to this parent')

    ensure_student_row(db, student)
    db.add(ParentStudent(parent_id=data.parent_id, student_id=data.student_id, relationship_type='parent'))
    db.commit()
    return {'message': 'Student linked to parent successfully'}


@router.delete('/unlink-student-parent')
def unlink_student_parent(
    data: StudentParentLinkRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    removed = db.query(ParentStudent).filter(
        ParentStudent.parent_id == data.parent_id,
        ParentStudent.student_id == data.student_id,
    ).delete(synchronize_session=False)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Link not found')
    db.commit()
    return {'message': 'Student unlinked from parent successfully'}


@router.post('/assign-tutor-class')
def assign_tutor_class(
    data: AssignTutorRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    tutor = get_profile_with_role(db, data.tutor_id, 'tutor')
    tutoring_class = get_class_or_404(db, data.class_id)

    ensure_tutor_row(db, tutor)
    tutoring_class.tutor_id = tutor.id
    notify(
        db,
        tutor.id,
        'class_scheduled',
        'Class assigned',
        f'You have been assigned to teach {tutoring_class.title}',
        entity_type='class',
        entity_id=tutoring_class.id,
    )
    db.commit()
    db.refresh(tutoring_class)
    return {'message': 'Tutor assigned to class successfully', 'class': ClassResponse.model_validate(tutoring_class)}


@router.get('/classes')
def list_all_classes(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('admin'))):
    classes = db.query(TutoringClass).order_by(TutoringClass.start_time.desc()).all()
    results = []
    for tutoring_class in classes:
        item = ClassListItemResponse.model_validate(tutoring_class).model_dump(mode='json')
        item['enrolledCount'] = len(tutoring_class.enrollments)
        results.append(item)
    return {'classes': results}


@router.post('/classes', status_code=status.HTTP_201_CREATED)
def create_class_as_admin(
    data: AdminCreateClassRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('admin')),
):
    if data.tutor_id:
        ensure_tutor_row(db, get_profile_with_role(db, data.tutor_id, 'tutor'))

    duration = data.duration or DEFAULT_CLASS_MINUTES
    start_time = data.scheduled_at or utcnow()
    tutoring_class = TutoringClass(
        title=data.title,
        subject=data.subject,
        description=data.description,
        tutor_id=data.tutor_id,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=duration),
        duration=duration,
        meeting_url=data.meeting_url,
        max_students=data.max_students,
        is_group=bool(data.max_students and data.max_students > 1),
        status='scheduled',
    )
    db.add(tutoring_class)
    db.commit()
    db.refresh(tutoring_class)
    logger.info('Admin %s created class %s', current_user.id, tutoring_class.id)
    return {'message': 'Class created successfully', 'class': ClassResponse.model_validate(tutoring_class)}


def _person(profile: Profile | None) -> tuple[str, str]:
    if profile is None:
        return '', ''
    return profile.full_name or '', profile.email or ''


@router.get('/relationships')
def list_relationships(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('admin'))):
    relationships = []

    enrollments = db.query(ClassEnrollment).join(TutoringClass).filter(TutoringClass.tutor_id.isnot(None)).all()
    for enrollment in enrollments:
        tutoring_class = enrollment.tutoring_class
        student_name, student_email = _person(db.get(Profile, enrollment.student_id))
        tutor = db.get(Profile, tutoring_class.tutor_id)
        tutor_name, tutor_email = _person(tutor)
        relationships.append({
            'type': 'student-tutor',
            'studentId': enrollment.student_id,
            'studentName': student_name,
            'studentEmail': student_email,
            'relatedId': tutoring_class.tutor_id,
            'relatedName': tutor_name,
            'relatedEmail': tutor_email,
            'relatedRole': 'tutor',
            'classId': tutoring_class.id,
            'className': tutoring_class.title,
        })

    for link in db.query(ParentStudent).all():
        student_name, student_email = _person(db.get(Profile, link.student_id))
        parent_name, parent_email = _person(link.parent)
        relationships.append({
            'type': 'student-parent',
            'studentId': link.student_id,
            'studentName': student_name,
            'studentEmail': student_email,
            'relatedId': link.parent_id,
            'relatedName': parent_name,
            'relatedEmail': parent_email,
            'relatedRole': 'parent',
        })

    return {'relationships': relationships}
