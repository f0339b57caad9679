import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import Field, field_validator, model_validator
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user, require_role
from tutorhq.core import config
from tutorhq.core.clock import as_naive_utc, utcnow
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.assignment import PUBLICATION_STATUSES, Assignment, AssignmentSubmission
from tutorhq.models.tutoring_class import ClassEnrollment, TutoringClass
from tutorhq.services.access import enrolled_class_ids, ensure_can_view_student, is_enrolled
from tutorhq.services.notifications import notify_many
from tutorhq.services.storage import read_upload, storage_path, upload_to_bucket

router = APIRouter(tags=['assignments'])
logger = logging.getLogger(__name__)


class AssignmentSubmissionResponse(OrmModel):
    id: str
    assignment_id: str
    student_id: str
    file_url: str | None = None
    description: str | None = None
    answers: dict | list | None = None
    submitted_at: datetime | None = None
    is_late: bool = False
    score: float | None = None
    percentage: float | None = None
    feedback: str | None = None
    graded_at: datetime | None = None
    status: str


class AssignmentResponse(OrmModel):
    id: str
    title: str
    description: str | None = None
    instructions: str | None = None
    class_id: str
    tutor_id: str
    total_marks: float
    due_date: datetime
    allow_late_submission: bool = False
    late_submission_penalty: float = 0
    status: str
    created_at: datetime | None = None


class AssignmentWithSubmissionsResponse(AssignmentResponse):
    submissions: list[AssignmentSubmissionResponse] = []


class CreateAssignmentRequest(CamelModel):
    title: str = Field(min_length=1)
    class_id: str = Field(min_length=1)
    due_date: datetime
    total_marks: float = Field(gt=0)
    description: str | None = None
    instructions: str | None = None
    allow_late_submission: bool = False
    late_submission_penalty: float = Field(default=0, ge=0, le=100)
    status: str = 'draft'

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value not in PUBLICATION_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(PUBLICATION_STATUSES)}")
        return value


class UpdateAssignmentRequest(CamelModel):
    non_nullable = (
        'title', 'due_date', 'total_marks', 'allow_late_submission', 'late_submission_penalty', 'status',
    )

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    instructions: str | None = None
    due_date: datetime | None = None
    total_marks: float | None = Field(default=None, gt=0)
    allow_late_submission: bool | None = None
    late_submission_penalty: float | None = Field(default=None, ge=0, le=100)
    status: str | None = None

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is not None and value not in PUBLICATION_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(PUBLICATION_STATUSES)}")
        return value


class SubmitAssignmentRequest(CamelModel):
    file_url: str | None = None
    description: str | None = None
    answers: dict | list | None = None

    @model_validator(mode='after')
    def require_content(self):
        if not (self.file_url or self.description or self.answers):
            raise ValueError('A submission needs a fileUrl, description or answers')
        return self


class GradeAssignmentRequest(CamelModel):
    score: float = Field(ge=0)
    feedback: str | None = None


def graded_percentage(score: float, total_marks: float, is_late: bool, late_penalty: float) -> float:
    """Score as a percentage of total marks, minus the late penalty in percentage points."""
    percentage = score / total_marks * 100 if total_marks else 0.0
    if is_late:
        percentage -= late_penalty or 0
    return round(max(percentage, 0.0), 2)


def get_assignment_or_404(db: Session, assignment_id: str) -> Assignment:
    assignment = db.get(Assignment, assignment_id)
    if assignment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Assignment not found')
    return assignment


def ensure_owner(assignment: Assignment, current_user: CurrentUser, action: str) -> None:
    if assignment.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'You can only {action} your own assignments',
        )


def enrolled_student_ids(db: Session, class_id: str) -> list[str]:
    rows = db.query(ClassEnrollment.student_id).filter(ClassEnrollment.class_id == class_id).all()
    return [student_id for (student_id,) in rows]


def announce_publication(db: Session, assignment: Assignment) -> None:
    notify_many(
        db,
        enrolled_student_ids(db, assignment.class_id),
        'assignment_created',
        'New assignment',
        f'"{assignment.title}" is due {assignment.due_date:%Y-%m-%d %H:%M} UTC',
        entity_type='assignment',
        entity_id=assignment.id,
    )


@router.post('/upload', status_code=status.HTTP_201_CREATED)
def upload_submission_file(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(require_role('student')),
):
    """Store a student's work; the returned fileUrl goes into the submission body."""
    contents = read_upload(file)
    path = storage_path(current_user.id, file.filename)
    public_url = upload_to_bucket(config.SUBMISSIONS_BUCKET, path, contents, file.content_type)

    logger.info('Student %s uploaded %s (%d bytes)', current_user.id, path, len(contents))
    return {
        'message': 'File uploaded successfully',
        'fileUrl': public_url,
        'fileName': file.filename,
        'fileSize': len(contents),
        'path': path,
    }


@router.post('', status_code=status.HTTP_201_CREATED)
def create_assignment(
    data: CreateAssignmentRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    tutoring_class = db.get(TutoringClass, data.class_id)
    if tutoring_class is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Class not found')
    if tutoring_class.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only create assignments for your own classes',
        )

    assignment = Assignment(tutor_id=current_user.id, **data.model_dump())
    db.add(assignment)
    db.flush()
    if assignment.status == 'published':
        announce_publication(db, assignment)
    db.commit()
    db.refresh(assignment)
    logger.info('Assignment %s created for class %s', assignment.id, assignment.class_id)
    return {'message': 'Assignment created successfully', 'assignment': AssignmentResponse.model_validate(assignment)}


@router.get('/class/{class_id}')
def list_class_assignments(
    class_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    tutoring_class = db.get(TutoringClass, class_id)
    if tutoring_class is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Class not found')

    query = db.query(Assignment).filter(Assignment.class_id == class_id)
    if current_user.id != tutoring_class.tutor_id and not current_user.is_admin:
        if not is_enrolled(db, current_user.id, class_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You are not enrolled in this class')
        query = query.filter(Assignment.status == 'published')

    assignments = query.order_by(Assignment.due_date.asc()).all()
    return {'assignments': [AssignmentResponse.model_validate(item) for item in assignments]}


@router.get('/student/{student_id}')
def list_student_assignments(
    student_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ensure_can_view_student(db, current_user, student_id)

    class_ids = enrolled_class_ids(db, student_id)
    assignments = db.query(Assignment).filter(
        Assignment.class_id.in_(class_ids),
        Assignment.status == 'published',
    ).order_by(Assignment.due_date.asc()).all()

    results = []
    for assignment in assignments:
        item = AssignmentResponse.model_validate(assignment).model_dump(mode='json')
        own = [submission for submission in assignment.submissions if submission.student_id == student_id]
        item['submission'] = (
            AssignmentSubmissionResponse.model_validate(own[0]).model_dump(mode='json') if own else None
        )
        results.append(item)
    return {'assignments': results}


@router.get('/{assignment_id}')
def get_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    assignment = get_assignment_or_404(db, assignment_id)

    if current_user.id == assignment.tutor_id or current_user.is_admin:
        return {'assignment': AssignmentWithSubmissionsResponse.model_validate(assignment)}

    if assignment.status != 'published' or not is_enrolled(db, current_user.id, assignment.class_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You do not have access to this assignment')

    item = AssignmentResponse.model_validate(assignment).model_dump(mode='json')
    item['submissions'] = [
        AssignmentSubmissionResponse.model_validate(submission).model_dump(mode='json')
        for submission in assignment.submissions
        if submission.student_id == current_user.id
    ]
    return {'assignment': item}


@router.patch('/{assignment_id}')
def update_assignment(
    assignment_id: str,
    data: UpdateAssignmentRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_owner(assignment, current_user, 'update')

    was_published = assignment.status == 'published'
    for column, value in data.updates().items():
        setattr(assignment, column, value)
    if assignment.status == 'published' and not was_published:
        announce_publication(db, assignment)

    db.commit()
    db.refresh(assignment)
    return {'message': 'Assignment updated successfully', 'assignment': AssignmentResponse.model_validate(assignment)}


@router.delete('/{assignment_id}')
def delete_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_owner(assignment, current_user, 'delete')
    db.delete(assignment)
    db.commit()
    return {'message': 'Assignment deleted successfully'}


@router.post('/{assignment_id}/submit', status_code=status.HTTP_201_CREATED)
def submit_assignment(
    assignment_id: str,
    data: SubmitAssignmentRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('student')),
):
    assignment = get_assignment_or_404(db, assignment_id)
    if assignment.status != 'published':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This assignment is not open for submissions')
    if not is_enrolled(db, current_user.id, assignment.class_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You are not enrolled in this class')

    existing = db.query(AssignmentSubmission).filter(
        AssignmentSubmission.assignment_id == assignment_id,
        AssignmentSubmission.student_id == current_user.id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='You have already submitted this assignment')

    submitted_at = utcnow()
    is_late = submitted_at > assignment.due_date
    if is_late and not assignment.allow_late_submission:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='The due date for this assignment has passed')

    submission = AssignmentSubmission(
        assignment_id=assignment_id,
        student_id=current_user.id,
        file_url=data.file_url,
        description=data.description,
        answers=data.answers,
        submitted_at=submitted_at,
        is_late=is_late,
        status='submitted',
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return {
        'message': 'Assignment submitted successfully',
        'submission': AssignmentSubmissionResponse.model_validate(submission),
    }


@router.post('/submissions/{submission_id}/grade')
def grade_assignment_submission(
    submission_id: str,
    data: GradeAssignmentRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    submission = db.get(AssignmentSubmission, submission_id)
    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Submission not found')

    assignment = submission.assignment
    ensure_owner(assignment, current_user, 'grade')
    if data.score > assignment.total_marks:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'score cannot exceed the total of {assignment.total_marks:g} marks',
        )

    submission.score = data.score
    submission.feedback = data.feedback
    submission.percentage = graded_percentage(
        data.score, assignment.total_marks, submission.is_late, assignment.late_submission_penalty,
    )
    submission.graded_at = utcnow()
    submission.status = 'graded'
    notify_many(
        db,
        [submission.student_id],
        'assignment_graded',
        'Assignment graded',
        f'"{assignment.title}" was graded: {submission.percentage:g}%',
        entity_type='assignment',
        entity_id=assignment.id,
    )
    db.commit()
    db.refresh(submission)
    return {'message': 'Submission graded successfully', 'submission': AssignmentSubmissionResponse.model_validate(submission)}
