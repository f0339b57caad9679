"""Per-subject progress figures for a student, shared by reports and the parent views."""
from collections import defaultdict
from datetime import datetime

from sqlalchemy.orm import Session

from tutorhq.models.assignment import Assignment, AssignmentSubmission
from tutorhq.models.test import TestAssignment
from tutorhq.models.tutoring_class import ClassEnrollment
from tutorhq.services.reports import SubjectProgress, percentage_of

UNKNOWN_SUBJECT = 'General'


def attendance_rate(statuses: list[str]) -> float:
    """Share of marked sessions attended; pending sessions are not counted."""
    marked = [value for value in statuses if value != 'pending']
    if not marked:
        return 0.0
    return round(sum(1 for value in marked if value == 'attended') / len(marked) * 100, 1)


def class_attendance(db: Session, student_id: str, since: datetime | None = None) -> list[ClassEnrollment]:
    """The student's enrollments, limited to classes starting at or after ``since``."""
    enrollments = db.query(ClassEnrollment).filter(ClassEnrollment.student_id == student_id).all()
    if since is None:
        return enrollments
    return [
        enrollment for enrollment in enrollments
        if enrollment.tutoring_class.start_time is None or enrollment.tutoring_class.start_time >= since
    ]


def collect_progress(db: Session, student_id: str, since: datetime | None = None) -> list[SubjectProgress]:
    scores: dict[str, list[float]] = defaultdict(list)
    test_counts: dict[str, int] = defaultdict(int)
    assignment_counts: dict[str, int] = defaultdict(int)
    attendance: dict[str, list[str]] = defaultdict(list)

    for test_assignment in db.query(TestAssignment).filter(TestAssignment.student_id == student_id).all():
        graded = [
            submission for submission in test_assignment.submissions
            if submission.score is not None and (since is None or (submission.graded_at or submission.submitted_at) >= since)
        ]
        if not graded:
            continue
        test = test_assignment.test
        subject = test.subject or UNKNOWN_SUBJECT
        scores[subject].append(percentage_of(graded[-1].score, test.total_points))
        test_counts[subject] += 1

    submissions = db.query(AssignmentSubmission).join(Assignment).filter(
        AssignmentSubmission.student_id == student_id,
        AssignmentSubmission.status == 'graded',
    ).all()
    for submission in submissions:
        if since is not None and (submission.graded_at or submission.submitted_at) < since:
            continue
        tutoring_class = submission.assignment.tutoring_class
        subject = tutoring_class.subject if tutoring_class is not None else UNKNOWN_SUBJECT
        scores[subject].append(submission.percentage or 0.0)
        assignment_counts[subject] += 1

    for enrollment in class_attendance(db, student_id, since):
        attendance[enrollment.tutoring_class.subject or UNKNOWN_SUBJECT].append(enrollment.attendance_status)

    subjects = []
    for name in sorted(set(scores) | set(attendance)):
        values = scores.get(name, [])
        subjects.append(SubjectProgress(
            name=name,
            average=round(sum(values) / len(values), 1) if values else 0.0,
            attendance=attendance_rate(attendance.get(name, [])),
            assignments=assignment_counts.get(name, 0),
            tests=test_counts.get(name, 0),
        ))
    return subjects
