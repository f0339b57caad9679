from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user, require_ownership
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.user import ROLES, ParentStudent, Profile, Student, Tutor
from tutorhq.services.access import ensure_can_view_student

router = APIRouter(tags=['users'])

SEARCH_RESULT_LIMIT = 10


class ProfileResponse(OrmModel):
    id: str
    email: str | None = None
    full_name: str | None = None
    role: str | None = None
    status: str | None = None
    avatar_url: str | None = None
    phone: str | None = None
    bio: str | None = None
    created_at: datetime | None = None


class ProfileSummary(OrmModel):
    id: str
    full_name: str | None = None
    email: str | None = None
    avatar_url: str | None = None


class StudentResponse(OrmModel):
    id: str
    grade_level: str | None = None
    school: str | None = None
    parent_id: str | None = None
    learning_goals: str | None = None
    profile: ProfileSummary | None = None


class TutorResponse(OrmModel):
    id: str
    subjects: list[str] | None = None
    qualifications: str | None = None
    experience_years: int | None = None
    hourly_rate: float | None = None
    rating: float | None = None
    availability: dict | None = None
    profile: ProfileSummary | None = None


class ParentLinkResponse(OrmModel):
    id: str
    parent_id: str
    student_id: str
    relationship_type: str = Field(serialization_alias='relationship')
    student: StudentResponse | None = None


class UpdateProfileRequest(CamelModel):
    non_nullable = ('full_name',)

    full_name: str | None = Field(default=None, min_length=1)
    avatar_url: str | None = None
    phone: str | None = None
    bio: str | None = None


class UpdateTutorRequest(CamelModel):
    subjects: list[str] | None = None
    qualifications: str | None = None
    experience_years: int | None = Field(default=None, ge=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    availability: dict | None = None


class UpdateStudentRequest(CamelModel):
    grade_level: str | None = None
    school: str | None = None
    learning_goals: str | None = None


class LinkStudentRequest(CamelModel):
    student_id: str = Field(min_length=1)
    relationship: str = 'parent'


def profile_with_role_data(db: Session, profile: Profile) -> dict:
    """Profile fields plus the student/tutor row for that role under ``roleData``."""
    data = ProfileResponse.model_validate(profile).model_dump(mode='json')
    role_data: dict = {}
    if profile.role == 'student':
        student = db.get(Student, profile.id)
        if student is not None:
            role_data = StudentResponse.model_validate(student).model_dump(mode='json', exclude={'profile'})
    elif profile.role == 'tutor':
        tutor = db.get(Tutor, profile.id)
        if tutor is not None:
            role_data = TutorResponse.model_validate(tutor).model_dump(mode='json', exclude={'profile'})
    data['roleData'] = role_data
    return data


def apply_updates(row, updates: dict) -> None:
    for column, value in updates.items():
        setattr(row, column, value)


@router.get('/profile/{user_id}')
def get_profile(user_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    profile = db.get(Profile, user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User profile not found')
    return {'profile': ProfileResponse.model_validate(profile)}


@router.put('/profile/{user_id}')
def update_profile(
    user_id: str,
    data: UpdateProfileRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_ownership('user_id')),
):
    profile = db.get(Profile, user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User profile not found')

    apply_updates(profile, data.updates())
    db.commit()
    db.refresh(profile)
    return {'message': 'Profile updated successfully', 'profile': ProfileResponse.model_validate(profile)}


@router.get('/tutors')
def list_tutors(
    subject: str | None = Query(default=None),
    min_rating: float | None = Query(default=None, alias='minRating'),
    max_rate: float | None = Query(default=None, alias='maxRate'),
    db: Session = Depends(get_db),
):
    query = db.query(Tutor).join(Profile, Profile.id == Tutor.id)
    if min_rating is not None:
        query = query.filter(Tutor.rating >= min_rating)
    if max_rate is not None:
        query = query.filter(Tutor.hourly_rate <= max_rate)

    tutors = query.order_by(Profile.full_name.asc()).all()
    if subject:
        # subjects is a JSON array; membership is checked here so SQLite and Postgres agree.
        wanted = subject.strip().lower()
        tutors = [tutor for tutor in tutors if wanted in {s.lower() for s in (tutor.subjects or [])}]
    return {'tutors': [TutorResponse.model_validate(tutor) for tutor in tutors]}


@router.get('/tutors/{tutor_id}')
def get_tutor(tutor_id: str, db: Session = Depends(get_db)):
    tutor = db.get(Tutor, tutor_id)
    if tutor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Tutor not found')
    return {'tutor': TutorResponse.model_validate(tutor)}


@router.put('/tutors/{tutor_id}')
def update_tutor(
    tutor_id: str,
    data: UpdateTutorRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_ownership('tutor_id')),
):
    tutor = db.get(Tutor, tutor_id)
    if tutor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Tutor not found')

    apply_updates(tutor, data.updates())
    db.commit()
    db.refresh(tutor)
    return {'message': 'Tutor profile updated successfully', 'tutor': TutorResponse.model_validate(tutor)}


@router.get('/students/{student_id}')
def get_student(student_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    ensure_can_view_student(db, current_user, student_id)

    student = db.get(Student, student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found')
    return {'student': StudentResponse.model_validate(student)}


@router.put('/students/{student_id}')
def update_student(
    student_id: str,
    data: UpdateStudentRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_ownership('student_id')),
):
    student = db.get(Student, student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found')

    apply_updates(student, data.updates())
    db.commit()
    db.refresh(student)
    return {'message': 'Student profile updated successfully', 'student': StudentResponse.model_validate(student)}


@router.get('/parents/{parent_id}/students')
def list_parent_students(
    parent_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_ownership('parent_id')),
):
    links = db.query(ParentStudent).filter(ParentStudent.parent_id == parent_id).all()
    return {'students': [ParentLinkResponse.model_validate(link).model_dump(mode='json', by_alias=True) for link in links]}


@router.post('/parents/{parent_id}/students', status_code=status.HTTP_201_CREATED)
def link_parent_student(
    parent_id: str,
    data: LinkStudentRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_ownership('parent_id')),
):
    if db.get(Student, data.student_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found')

    existing = db.query(ParentStudent).filter(
        ParentStudent.parent_id == parent_id,
        ParentStudent.student_id == data.student_id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Student is already linked to this parent')

    link = ParentStudent(parent_id=parent_id, student_id=data.student_id, relationship_type=data.relationship or 'parent')
    db.add(link)
    db.commit()
    db.refresh(link)
    return {
        'message': 'Student linked successfully',
        'link': ParentLinkResponse.model_validate(link).model_dump(mode='json', by_alias=True, exclude={'student'}),
    }


@router.get('/search')
def search_users(
    query: str | None = Query(default=None),
    role: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    term = (query or '').strip()
    if not term:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Search query is required')
    if role and role not in ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid role')

    pattern = f'%{term.lower()}%'
    db_query = db.query(Profile).filter(
        or_(func.lower(Profile.full_name).like(pattern), func.lower(Profile.email).like(pattern))
    )
    if role:
        db_query = db_query.filter(Profile.role == role)

    users = db_query.order_by(Profile.full_name.asc()).limit(SEARCH_RESULT_LIMIT).all()
    return {'users': [ProfileSummary.model_validate(user).model_dump() | {'role': user.role} for user in users]}
