"""PDF exports for test results and student progress."""
from dataclasses import dataclass, field
from datetime import date
from io import BytesIO
from xml.sax.saxutils import escape

from fastapi import Response
from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from tutorhq.services.storage import attachment_disposition

BRAND_NAME = 'TutorHQ'
PRIMARY_COLOR = colors.HexColor('#0066ff')
TEXT_COLOR = colors.HexColor('#333333')


def letter_grade(percentage: float) -> str:
    if percentage >= 90:
        return 'A'
    if percentage >= 80:
        return 'B'
    if percentage >= 70:
        return 'C'
    if percentage >= 60:
        return 'D'
    return 'F'


def percentage_of(score: float | None, total: float | None) -> float:
    if score is None or not total:
        return 0.0
    return round(score / total * 100, 1)


@dataclass
class TestResultRow:
    __test__ = False

    student_name: str
    score: float | None
    percentage: float

    @property
    def grade(self) -> str:
        return letter_grade(self.percentage) if self.score is not None else '-'


@dataclass
class TestReport:
    __test__ = False

    test_name: str
    subject: str
    total_points: float
    results: list[TestResultRow] = field(default_factory=list)
    generated_on: date = field(default_factory=date.today)

    @property
    def graded(self) -> list[TestResultRow]:
        return [row for row in self.results if row.score is not None]

    @property
    def class_average(self) -> float:
        graded = self.graded
        if not graded:
            return 0.0
        return round(sum(row.percentage for row in graded) / len(graded), 1)

    @property
    def highest_score(self) -> float:
        return max((row.score for row in self.graded), default=0.0)

    @property
    def lowest_score(self) -> float:
        return min((row.score for row in self.graded), default=0.0)


@dataclass
class SubjectProgress:
    name: str
    average: float
    attendance: float
    assignments: int
    tests: int


def overall_average(subjects: list[SubjectProgress]) -> float:
    if not subjects:
        return 0.0
    return round(sum(subject.average for subject in subjects) / len(subjects), 1)


@dataclass
class StudentProgressReport:
    student_name: str
    grade_level: str
    period: str
    subjects: list[SubjectProgress] = field(default_factory=list)
    attendance_rate: float = 0.0
    comments: str | None = None
    generated_on: date = field(default_factory=date.today)

    @property
    def overall_average(self) -> float:
        return overall_average(self.subjects)


def _styles():
    styles = getSampleStyleSheet()
    return {
        'brand': ParagraphStyle(
            'Brand', parent=styles['Heading1'], fontSize=20, textColor=PRIMARY_COLOR, spaceAfter=4,
        ),
        'title': ParagraphStyle(
            'ReportTitle', parent=styles['Heading2'], fontSize=16, textColor=PRIMARY_COLOR, spaceAfter=12,
        ),
        'body': ParagraphStyle(
            'ReportBody', parent=styles['Normal'], fontSize=11, textColor=TEXT_COLOR, spaceAfter=6, alignment=TA_LEFT,
        ),
        'footer': ParagraphStyle(
            'ReportFooter', parent=styles['Normal'], fontSize=8, textColor=TEXT_COLOR,
        ),
    }


def _table(rows: list[list[str]]) -> Table:
    table = Table(rows, repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), PRIMARY_COLOR),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f5f7fb')]),
        ('GRID', (0, 0), (-1, -1), 0.25, colors.HexColor('#cccccc')),
        ('ALIGN', (1, 1), (-1, -1), 'CENTER'),
    ]))
    return table


def _render(title: str, body: list, generated_on: date) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=title, author=BRAND_NAME)
    styles = _styles()
    story = [
        Paragraph(BRAND_NAME, styles['brand']),
        Paragraph(title, styles['title']),
        *body,
        Spacer(1, 0.3 * inch),
        Paragraph(f'Generated on {generated_on.isoformat()}', styles['footer']),
    ]
    doc.build(story)
    return buffer.getvalue()


def build_test_report(report: TestReport) -> bytes:
    styles = _styles()
    rows = [['Student', 'Score', 'Percentage', 'Grade']]
    for row in report.results:
        score = '-' if row.score is None else f'{row.score:g} / {report.total_points:g}'
        rows.append([row.student_name, score, f'{row.percentage:.1f}%', row.grade])

    body = [
        Paragraph(f'Subject: {escape(report.subject)}', styles['body']),
        Paragraph(f'Total points: {report.total_points:g}', styles['body']),
        Paragraph(f'Class average: {report.class_average:.1f}%', styles['body']),
        Paragraph(
            f'Highest score: {report.highest_score:g} &nbsp; Lowest score: {report.lowest_score:g}',
            styles['body'],
        ),
        Spacer(1, 0.2 * inch),
        _table(rows),
    ]
    return _render(f'Test Report: {escape(report.test_name)}', body, report.generated_on)


def build_student_progress_report(report: StudentProgressReport) -> bytes:
    styles = _styles()
    rows = [['Subject', 'Average', 'Attendance', 'Assignments', 'Tests']]
    for subject in report.subjects:
        rows.append([
            subject.name,
            f'{subject.average:.1f}%',
            f'{subject.attendance:.1f}%',
            str(subject.assignments),
            str(subject.tests),
        ])

    body = [
        Paragraph(f'Student: {escape(report.student_name)}', styles['body']),
        Paragraph(f'Grade: {escape(report.grade_level or "-")}', styles['body']),
        Paragraph(f'Period: {escape(report.period)}', styles['body']),
        Paragraph(
            f'Overall average: {report.overall_average:.1f}% ({letter_grade(report.overall_average)})',
            styles['body'],
        ),
        Paragraph(f'Attendance rate: {report.attendance_rate:.1f}%', styles['body']),
        Spacer(1, 0.2 * inch),
        _table(rows),
    ]
    if report.comments:
        body += [Spacer(1, 0.2 * inch), Paragraph(f'Comments: {escape(report.comments)}', styles['body'])]
    return _render('Student Progress Report', body, report.generated_on)


def pdf_response(content: bytes, filename: str) -> Response:
    """Download response; ``filename`` may hold any characters, e.g. a test title."""
    return Response(
        content=content,
        media_type='application/pdf',
        headers={'Content-Disposition': attachment_disposition(filename)},
    )
