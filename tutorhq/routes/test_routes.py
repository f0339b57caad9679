import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import Field, field_validator
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user, require_role
from tutorhq.core import config
from tutorhq.core.clock import as_naive_utc, utcnow
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.test import TEST_ASSIGNMENT_STATUSES, Test, TestAssignment, TestSubmission
from tutorhq.models.user import Student
from tutorhq.services.access import is_parent_of
from tutorhq.services.notifications import notify
from tutorhq.services.reports import TestReport, TestResultRow, build_test_report, pdf_response, percentage_of
from tutorhq.services.storage import read_upload, remove_from_bucket, storage_path, upload_to_bucket

router = APIRouter(tags=['tests'])
logger = logging.getLogger(__name__)


class TestResponse(OrmModel):
    id: str
    title: str
    subject: str | None = None
    description: str | None = None
    tutor_id: str | None = None
    test_type: str | None = None
    questions: list | dict | None = None
    total_points: float | None = None
    duration: int | None = None
    due_date: datetime | None = None
    created_at: datetime | None = None


class SubmissionResponse(OrmModel):
    id: str
    assignment_id: str
    answers: list | dict | None = None
    score: float | None = None
    feedback: str | None = None
    submitted_at: datetime | None = None
    graded_at: datetime | None = None
    graded_by: str | None = None


class AssignmentResponse(OrmModel):
    id: str
    test_id: str
    student_id: str
    due_date: datetime | None = None
    status: str
    assigned_at: datetime | None = None


class AssignmentDetailResponse(AssignmentResponse):
    test: TestResponse | None = None
    submissions: list[SubmissionResponse] = []


class CreateTestRequest(CamelModel):
    title: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    test_type: str = Field(min_length=1)
    questions: list
    total_points: float = Field(ge=0)
    description: str | None = None
    duration: int | None = Field(default=None, gt=0)
    due_date: datetime | None = None

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)


class UpdateTestRequest(CamelModel):
    non_nullable = ('title', 'test_type', 'questions', 'total_points')

    title: str | None = Field(default=None, min_length=1)
    subject: str | None = Field(default=None, min_length=1)
    description: str | None = None
    test_type: str | None = Field(default=None, min_length=1)
    questions: list | None = None
    total_points: float | None = Field(default=None, ge=0)
    duration: int | None = Field(default=None, gt=0)
    due_date: datetime | None = None

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)


class AssignTestRequest(CamelModel):
    student_ids: list[str] = Field(min_length=1)
    due_date: datetime | None = None

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)


class SubmitTestRequest(CamelModel):
    answers: dict | list


class GradeSubmissionRequest(CamelModel):
    score: float = Field(ge=0)
    feedback: str | None = None


class DeleteImageRequest(CamelModel):
    file_name: str = Field(min_length=1)


def get_test_or_404(db: Session, test_id: str) -> Test:
    test = db.get(Test, test_id)
    if test is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Test not found')
    return test


def get_owned_test(db: Session, test_id: str, current_user: CurrentUser, action: str) -> Test:
    test = get_test_or_404(db, test_id)
    if test.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'You can only {action} your own tests',
        )
    return test


@router.get('')
def list_tests(
    tutor_id: str | None = Query(default=None, alias='tutorId'),
    subject: str | None = Query(default=None),
    test_type: str | None = Query(default=None, alias='testType'),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    query = db.query(Test)
    if tutor_id:
        query = query.filter(Test.tutor_id == tutor_id)
    if subject:
        query = query.filter(Test.subject == subject)
    if test_type:
        query = query.filter(Test.test_type == test_type)

    tests = query.order_by(Test.created_at.desc()).all()
    return {'tests': [TestResponse.model_validate(test) for test in tests]}


@router.get('/assignments/student/{student_id}')
def list_student_assignments(
    student_id: str,
    assignment_status: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    allowed = (
        current_user.id == student_id
        or current_user.role in ('admin', 'tutor')
        or (current_user.role == 'parent' and is_parent_of(db, current_user.id, student_id))
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only view your own assignments')
    if assignment_status and assignment_status not in TEST_ASSIGNMENT_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid assignment status')

    query = db.query(TestAssignment).filter(TestAssignment.student_id == student_id)
    if assignment_status:
        query = query.filter(TestAssignment.status == assignment_status)

    assignments = query.order_by(TestAssignment.assigned_at.desc()).all()
    return {'assignments': [AssignmentDetailResponse.model_validate(item) for item in assignments]}


@router.get('/assignments/{assignment_id}')
def get_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    assignment = db.get(TestAssignment, assignment_id)
    if assignment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Assignment not found')

    is_student = current_user.id == assignment.student_id
    is_tutor = assignment.test is not None and current_user.id == assignment.test.tutor_id
    if not (is_student or is_tutor or current_user.is_admin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You do not have access to this assignment')

    return {'assignment': AssignmentDetailResponse.model_validate(assignment)}


@router.post('/assignments/{assignment_id}/submit', status_code=status.HTTP_201_CREATED)
def submit_test(
    assignment_id: str,
    data: SubmitTestRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('student')),
):
    assignment = db.get(TestAssignment, assignment_id)
    if assignment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Assignment not found')
    if assignment.student_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only submit your own assignments')
    if assignment.status != 'assigned':
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='This test has already been submitted')

    submission = TestSubmission(assignment_id=assignment_id, answers=data.answers)
    db.add(submission)
    db.flush()
    assignment.status = 'submitted'
    notify(
        db,
        assignment.test.tutor_id,
        'test_available',
        'Test submitted',
        f'{current_user.profile.full_name or "A student"} submitted {assignment.test.title}',
        entity_type='test_submission',
        entity_id=submission.id,
    )
    db.commit()
    db.refresh(submission)
    return {'message': 'Test submitted successfully', 'submission': SubmissionResponse.model_validate(submission)}


@router.put('/submissions/{submission_id}/grade')
def grade_submission(
    submission_id: str,
    data: GradeSubmissionRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    submission = db.get(TestSubmission, submission_id)
    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Submission not found')

    test = submission.assignment.test
    if test.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only grade submissions for your own tests',
        )
    if test.total_points is not None and data.score > test.total_points:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'score cannot exceed the test total of {test.total_points:g} points',
        )

    submission.score = data.score
    submission.feedback = data.feedback
    submission.graded_at = utcnow()
    submission.graded_by = current_user.id
    submission.assignment.status = 'graded'
    notify(
        db,
        submission.assignment.student_id,
        'test_graded',
        'Test graded',
        f'Your test "{test.title}" has been graded: {data.score:g}/{test.total_points or 0:g}',
        entity_type='test_assignment',
        entity_id=submission.assignment_id,
    )
    db.commit()
    db.refresh(submission)
    logger.info('Submission %s graded by %s', submission_id, current_user.id)
    return {'message': 'Test graded successfully', 'submission': SubmissionResponse.model_validate(submission)}


@router.get('/tutor/all')
def list_tutor_tests(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('tutor'))):
    tests = db.query(Test).filter(Test.tutor_id == current_user.id).order_by(Test.created_at.desc()).all()
    return {'tests': [TestResponse.model_validate(test) for test in tests]}


@router.post('/upload-image', status_code=status.HTTP_201_CREATED)
def upload_question_image(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    if not (file.content_type or '').startswith('image/'):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Only image files can be attached to questions')
    contents = read_upload(file, config.MAX_IMAGE_BYTES)
    path = storage_path(current_user.id, file.filename)
    image_url = upload_to_bucket(config.TEST_IMAGES_BUCKET, path, contents, file.content_type)
    return {'message': 'Image uploaded successfully', 'data': {'imageUrl': image_url, 'fileName': path}}


@router.post('/delete-image')
def delete_question_image(
    data: DeleteImageRequest,
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    # Image paths are prefixed with the uploading tutor's id.
    if not data.file_name.startswith(f'{current_user.id}/') or '..' in data.file_name.split('/'):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only delete your own images')
    remove_from_bucket(config.TEST_IMAGES_BUCKET, data.file_name)
    return {'message': 'Image deleted successfully'}


@router.get('/{test_id}')
def get_test(test_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return {'test': TestResponse.model_validate(get_test_or_404(db, test_id))}


@router.post('', status_code=status.HTTP_201_CREATED)
def create_test(
    data: CreateTestRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    test = Test(
        title=data.title,
        subject=data.subject,
        description=data.description,
        tutor_id=current_user.id,
        test_type=data.test_type,
        questions=data.questions,
        total_points=data.total_points,
        duration=data.duration,
        due_date=data.due_date,
    )
    db.add(test)
    db.commit()
    db.refresh(test)
    logger.info('Test %s created by tutor %s', test.id, current_user.id)
    return {'message': 'Test created successfully', 'test': TestResponse.model_validate(test)}


@router.put('/{test_id}')
def update_test(
    test_id: str,
    data: UpdateTestRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    test = get_owned_test(db, test_id, current_user, 'update')
    for column, value in data.updates().items():
        setattr(test, column, value)
    db.commit()
    db.refresh(test)
    return {'message': 'Test updated successfully', 'test': TestResponse.model_validate(test)}


@router.delete('/{test_id}')
def delete_test(
    test_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    test = get_owned_test(db, test_id, current_user, 'delete')
    db.delete(test)
    db.commit()
    return {'message': 'Test deleted successfully'}


@router.post('/{test_id}/assign', status_code=status.HTTP_201_CREATED)
def assign_test(
    test_id: str,
    data: AssignTestRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    test = db.get(Test, test_id)
    if test is None or test.tutor_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only assign your own tests')

    student_ids = list(dict.fromkeys(data.student_ids))
    known = {student_id for (student_id,) in db.query(Student.id).filter(Student.id.in_(student_ids)).all()}
    unknown = [student_id for student_id in student_ids if student_id not in known]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown student id(s): {', '.join(unknown)}",
        )

    assignments = [
        TestAssignment(test_id=test_id, student_id=student_id, due_date=data.due_date or test.due_date, status='assigned')
        for student_id in student_ids
    ]
    db.add_all(assignments)
    db.flush()
    for assignment in assignments:
        notify(
            db,
            assignment.student_id,
            'test_available',
            'New test assigned',
            f'You have been assigned "{test.title}"',
            entity_type='test_assignment',
            entity_id=assignment.id,
        )
    db.commit()
    return {
        'message': 'Test assigned successfully',
        'assignments': [AssignmentResponse.model_validate(assignment) for assignment in assignments],
    }


@router.get('/{test_id}/report.pdf')
def export_test_report(
    test_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor', 'admin')),
):
    test = get_test_or_404(db, test_id)
    if test.tutor_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only export your own tests')

    rows = []
    for assignment in test.assignments:
        graded = [submission for submission in assignment.submissions if submission.score is not None]
        score = graded[-1].score if graded else None
        name = assignment.student.profile.full_name if assignment.student and assignment.student.profile else None
        rows.append(TestResultRow(
            student_name=name or assignment.student_id,
            score=score,
            percentage=percentage_of(score, test.total_points),
        ))

    report = TestReport(
        test_name=test.title,
        subject=test.subject or '',
        total_points=test.total_points or 0,
        results=sorted(rows, key=lambda row: row.student_name.lower()),
    )
    return pdf_response(build_test_report(report), f'{test.title}_report.pdf')
