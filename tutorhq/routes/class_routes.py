import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator, model_validator
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, require_role
from tutorhq.core.clock import as_naive_utc
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.assignment import Assignment
from tutorhq.models.material import Material
from tutorhq.models.tutoring_class import ATTENDANCE_STATUSES, CLASS_STATUSES, ClassEnrollment, TutoringClass
from tutorhq.routes.user_routes import StudentResponse, TutorResponse
from tutorhq.services.access import enrolled_class_ids
from tutorhq.services.notifications import notify, notify_many

router = APIRouter(tags=['classes'])
logger = logging.getLogger(__name__)

CLOSED_CLASS_STATUSES = {'completed', 'cancelled'}


class ClassResponse(OrmModel):
    id: str
    title: str
    subject: str
    description: str | None = None
    tutor_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = None
    meeting_url: str | None = None
    max_students: int | None = None
    is_group: bool | None = None
    status: str | None = None
    created_at: datetime | None = None


class EnrollmentResponse(OrmModel):
    id: str
    class_id: str
    student_id: str
    attendance_status: str
    enrolled_at: datetime | None = None


class EnrollmentDetailResponse(EnrollmentResponse):
    student: StudentResponse | None = None


class ClassListItemResponse(ClassResponse):
    tutor: TutorResponse | None = None


class ClassDetailResponse(ClassListItemResponse):
    enrollments: list[EnrollmentDetailResponse] = []


class CreateClassRequest(CamelModel):
    title: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    description: str | None = None
    duration: int | None = Field(default=None, gt=0)
    meeting_url: str | None = None
    max_students: int | None = Field(default=None, ge=1)
    is_group: bool = False

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_times(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @model_validator(mode='after')
    def validate_time_range(self):
        if self.end_time <= self.start_time:
            raise ValueError('endTime must be after startTime')
        return self


class UpdateClassRequest(CamelModel):
    non_nullable = ('title', 'subject', 'start_time', 'end_time', 'status')

    title: str | None = Field(default=None, min_length=1)
    subject: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = Field(default=None, gt=0)
    meeting_url: str | None = None
    status: str | None = None
    max_students: int | None = Field(default=None, ge=1)

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_times(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is not None and value not in CLASS_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(CLASS_STATUSES)}")
        return value


class AttendanceRequest(CamelModel):
    attendance_status: str

    @field_validator('attendance_status')
    @classmethod
    def validate_attendance_status(cls, value: str) -> str:
        if value not in ATTENDANCE_STATUSES:
            raise ValueError('Invalid attendance status')
        return value


def duration_minutes(start_time: datetime, end_time: datetime) -> int:
    return int((end_time - start_time).total_seconds() // 60)


def get_class_or_404(db: Session, class_id: str) -> TutoringClass:
    tutoring_class = db.get(TutoringClass, class_id)
    if tutoring_class is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Class not found')
    return tutoring_class


def get_owned_class(db: Session, class_id: str, current_user: CurrentUser, action: str) -> TutoringClass:
    tutoring_class = get_class_or_404(db, class_id)
    if tutoring_class.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'You can only {action} your own classes',
        )
    return tutoring_class


def announce_cancellation(db: Session, tutoring_class: TutoringClass) -> None:
    """Tell enrolled students; the notice lapses once the class slot is over."""
    notify_many(
        db,
        [enrollment.student_id for enrollment in tutoring_class.enrollments],
        'class_cancelled',
        'Class cancelled',
        f'{tutoring_class.title} has been cancelled',
        entity_type='class',
        entity_id=tutoring_class.id,
        expires_at=tutoring_class.end_time,
    )


@router.get('')
def list_classes(
    tutor_id: str | None = Query(default=None, alias='tutorId'),
    student_id: str | None = Query(default=None, alias='studentId'),
    class_status: str | None = Query(default=None, alias='status'),
    subject: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None, alias='startDate'),
    end_date: datetime | None = Query(default=None, alias='endDate'),
    db: Session = Depends(get_db),
):
    query = db.query(TutoringClass)
    if tutor_id:
        query = query.filter(TutoringClass.tutor_id == tutor_id)
    if class_status:
        query = query.filter(TutoringClass.status == class_status)
    if subject:
        query = query.filter(TutoringClass.subject == subject)
    if start_date:
        query = query.filter(TutoringClass.start_time >= as_naive_utc(start_date))
    if end_date:
        query = query.filter(TutoringClass.start_time <= as_naive_utc(end_date))
    if student_id:
        query = query.filter(TutoringClass.id.in_(enrolled_class_ids(db, student_id)))

    classes = query.order_by(TutoringClass.start_time.asc()).all()
    return {'classes': [ClassListItemResponse.model_validate(item) for item in classes]}


@router.get('/{class_id}')
def get_class(class_id: str, db: Session = Depends(get_db)):
    tutoring_class = get_class_or_404(db, class_id)
    return {'class': ClassDetailResponse.model_validate(tutoring_class)}


@router.post('', status_code=status.HTTP_201_CREATED)
def create_class(
    data: CreateClassRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    tutoring_class = TutoringClass(
        title=data.title,
        subject=data.subject,
        description=data.description,
        tutor_id=current_user.id,
        start_time=data.start_time,
        end_time=data.end_time,
        duration=data.duration or duration_minutes(data.start_time, data.end_time),
        meeting_url=data.meeting_url,
        max_students=data.max_students,
        is_group=data.is_group,
        status='scheduled',
    )
    db.add(tutoring_class)
    db.commit()
    db.refresh(tutoring_class)
    logger.info('Class %s created by tutor %s', tutoring_class.id, current_user.id)
    return {'message': 'Class created successfully', 'class': ClassResponse.model_validate(tutoring_class)}


@router.put('/{class_id}')
def update_class(
    class_id: str,
    data: UpdateClassRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    tutoring_class = get_owned_class(db, class_id, current_user, 'update')

    was_cancelled = tutoring_class.status == 'cancelled'
    for column, value in data.updates().items():
        setattr(tutoring_class, column, value)

    if tutoring_class.start_time and tutoring_class.end_time and tutoring_class.end_time <= tutoring_class.start_time:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='endTime must be after startTime')
    if tutoring_class.status == 'cancelled' and not was_cancelled:
        announce_cancellation(db, tutoring_class)

    db.commit()
    db.refresh(tutoring_class)
    return {'message': 'Class updated successfully', 'class': ClassResponse.model_validate(tutoring_class)}


@router.delete('/{class_id}')
def delete_class(
    class_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    tutoring_class = get_owned_class(db, class_id, current_user, 'delete')

    db.query(Material).filter(Material.class_id == class_id).delete(synchronize_session=False)
    for assignment in db.query(Assignment).filter(Assignment.class_id == class_id).all():
        db.delete(assignment)
    db.delete(tutoring_class)
    db.commit()
    logger.info('Class %s deleted by tutor %s', class_id, current_user.id)
    return {'message': 'Class deleted successfully'}


@router.post('/{class_id}/enroll', status_code=status.HTTP_201_CREATED)
def enroll(
    class_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('student')),
):
    tutoring_class = get_class_or_404(db, class_id)
    if tutoring_class.status in CLOSED_CLASS_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This class is not open for enrollment')

    existing = db.query(ClassEnrollment).filter(
        ClassEnrollment.class_id == class_id,
        ClassEnrollment.student_id == current_user.id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='You are already enrolled in this class')

    if tutoring_class.max_students is not None:
        enrolled = db.query(ClassEnrollment).filter(ClassEnrollment.class_id == class_id).count()
        if enrolled >= tutoring_class.max_students:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='This class is full')

    enrollment = ClassEnrollment(class_id=class_id, student_id=current_user.id, attendance_status='pending')
    db.add(enrollment)
    notify(
        db,
        tutoring_class.tutor_id,
        'class_scheduled',
        'New enrollment',
        f'{current_user.profile.full_name or "A student"} enrolled in {tutoring_class.title}',
        entity_type='class',
        entity_id=class_id,
    )
    db.commit()
    db.refresh(enrollment)
    return {'message': 'Enrolled successfully', 'enrollment': EnrollmentResponse.model_validate(enrollment)}


@router.delete('/{class_id}/enroll')
def unenroll(
    class_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('student')),
):
    removed = db.query(ClassEnrollment).filter(
        ClassEnrollment.class_id == class_id,
        ClassEnrollment.student_id == current_user.id,
    ).delete(synchronize_session=False)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='You are not enrolled in this class')
    db.commit()
    return {'message': 'Unenrolled successfully'}


@router.put('/{class_id}/attendance/{enrollment_id}')
def update_attendance(
    class_id: str,
    enrollment_id: str,
    data: AttendanceRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    tutoring_class = db.get(TutoringClass, class_id)
    if tutoring_class is None or tutoring_class.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only update attendance for your own classes',
        )

    enrollment = db.query(ClassEnrollment).filter(
        ClassEnrollment.id == enrollment_id,
        ClassEnrollment.class_id == class_id,
    ).first()
    if enrollment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Enrollment not found')

    enrollment.attendance_status = data.attendance_status
    db.commit()
    db.refresh(enrollment)
    return {'message': 'Attendance updated successfully', 'enrollment': EnrollmentResponse.model_validate(enrollment)}
