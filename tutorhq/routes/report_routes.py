from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user
from tutorhq.database import get_db
from tutorhq.models.user import Student
from tutorhq.services.access import is_parent_of
from tutorhq.services.progress import attendance_rate, class_attendance, collect_progress
from tutorhq.services.reports import StudentProgressReport, build_student_progress_report, pdf_response

router = APIRouter(tags=['reports'])


@router.get('/students/{student_id}/progress.pdf')
def export_student_progress(
    student_id: str,
    since: date | None = Query(default=None),
    comments: str | None = Query(default=None, max_length=1000),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    allowed = (
        current_user.id == student_id
        or current_user.is_admin
        or (current_user.role == 'parent' and is_parent_of(db, current_user.id, student_id))
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You do not have access to this student')

    student = db.get(Student, student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found')

    since_at = datetime.combine(since, time.min) if since else None
    statuses = [enrollment.attendance_status for enrollment in class_attendance(db, student_id, since_at)]
    name = student.profile.full_name if student.profile else None
    report = StudentProgressReport(
        student_name=name or student_id,
        grade_level=student.grade_level or '',
        period=f'Since {since.isoformat()}' if since else 'All time',
        subjects=collect_progress(db, student_id, since_at),
        attendance_rate=attendance_rate(statuses),
        comments=comments,
    )
    return pdf_response(build_student_progress_report(report), f'{name or "student"}_progress.pdf')
