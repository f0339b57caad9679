from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user, require_role
from tutorhq.core.clock import utcnow
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.goal import GOAL_CATEGORIES, GOAL_STATUSES, Goal, Milestone
from tutorhq.services.access import ensure_can_view_student, parent_ids
from tutorhq.services.notifications import notify_many

router = APIRouter(tags=['goals'])


def iso_week(value: date) -> tuple[int, int]:
    """(week_number, year) of the ISO calendar week containing ``value``."""
    year, week, _ = value.isocalendar()
    return week, year


def effective_status(goal: Goal, today: date | None = None) -> str:
    today = today or utcnow().date()
    if goal.status != 'completed' and goal.target_date and goal.target_date < today:
        return 'overdue'
    return goal.status


class MilestoneResponse(OrmModel):
    id: str
    goal_id: str
    title: str
    is_completed: bool = False
    completed_at: datetime | None = None
    order_index: int = 0


class GoalResponse(OrmModel):
    id: str
    student_id: str
    title: str
    description: str | None = None
    category: str
    status: str
    target_date: date
    completed_at: datetime | None = None
    week_number: int | None = None
    year: int | None = None
    created_at: datetime | None = None
    milestones: list[MilestoneResponse] = []

    @classmethod
    def from_goal(cls, goal: Goal) -> 'GoalResponse':
        response = cls.model_validate(goal)
        response.status = effective_status(goal)
        return response


def _check_category(value: str | None) -> str | None:
    if value is not None and value not in GOAL_CATEGORIES:
        raise ValueError(f"category must be one of: {', '.join(GOAL_CATEGORIES)}")
    return value


def _check_status(value: str | None) -> str | None:
    if value is not None and value not in GOAL_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(GOAL_STATUSES)}")
    return value


class CreateGoalRequest(CamelModel):
    title: str = Field(min_length=1)
    target_date: date
    description: str | None = None
    category: str = 'academic'
    milestones: list[str] = []

    @field_validator('category')
    @classmethod
    def validate_category(cls, value: str) -> str:
        return _check_category(value)


class UpdateGoalRequest(CamelModel):
    non_nullable = ('title', 'category', 'status', 'target_date')

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    category: str | None = None
    status: str | None = None
    target_date: date | None = None

    @field_validator('category')
    @classmethod
    def validate_category(cls, value: str | None) -> str | None:
        return _check_category(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _check_status(value)


class CreateMilestoneRequest(CamelModel):
    title: str = Field(min_length=1)
    order_index: int | None = Field(default=None, ge=0)


class UpdateMilestoneRequest(CamelModel):
    non_nullable = ('title', 'is_completed', 'order_index')

    title: str | None = Field(default=None, min_length=1)
    is_completed: bool | None = None
    order_index: int | None = Field(default=None, ge=0)


def get_goal_or_404(db: Session, goal_id: str) -> Goal:
    goal = db.get(Goal, goal_id)
    if goal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Goal not found')
    return goal


def ensure_goal_owner(goal: Goal, current_user: CurrentUser) -> None:
    if goal.student_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only modify your own goals')


def set_goal_status(goal: Goal, new_status: str) -> None:
    if new_status == 'completed' and goal.status != 'completed':
        goal.completed_at = utcnow()
    elif new_status != 'completed':
        goal.completed_at = None
    goal.status = new_status


def announce_completion(db: Session, goal: Goal) -> None:
    notify_many(
        db,
        parent_ids(db, goal.student_id),
        'goal_completed',
        'Goal completed',
        f'Your child completed the goal "{goal.title}"',
        entity_type='goal',
        entity_id=goal.id,
    )


@router.post('', status_code=status.HTTP_201_CREATED)
def create_goal(
    data: CreateGoalRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('student')),
):
    week_number, year = iso_week(data.target_date)
    goal = Goal(
        student_id=current_user.id,
        title=data.title,
        description=data.description,
        category=data.category,
        status='not_started',
        target_date=data.target_date,
        week_number=week_number,
        year=year,
    )
    goal.milestones = [
        Milestone(title=title, order_index=index)
        for index, title in enumerate(item.strip() for item in data.milestones)
        if title
    ]
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return {'message': 'Goal created successfully', 'goal': GoalResponse.from_goal(goal)}


@router.get('/student/{student_id}')
def list_student_goals(
    student_id: str,
    week: int | None = Query(default=None, ge=1, le=53),
    year: int | None = Query(default=None),
    goal_status: str | None = Query(default=None, alias='status'),
    category: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ensure_can_view_student(db, current_user, student_id)

    query = db.query(Goal).filter(Goal.student_id == student_id)
    if week is not None:
        query = query.filter(Goal.week_number == week)
    if year is not None:
        query = query.filter(Goal.year == year)
    if category:
        query = query.filter(Goal.category == category)

    goals = [GoalResponse.from_goal(goal) for goal in query.order_by(Goal.target_date.asc()).all()]
    if goal_status:
        goals = [goal for goal in goals if goal.status == goal_status]
    return {'goals': goals}


@router.get('/student/{student_id}/stats')
def goal_stats(
    student_id: str,
    week: int | None = Query(default=None, ge=1, le=53),
    year: int | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ensure_can_view_student(db, current_user, student_id)

    current_week, current_year = iso_week(utcnow().date())
    week = week or current_week
    year = year or current_year

    goals = db.query(Goal).filter(
        Goal.student_id == student_id,
        Goal.week_number == week,
        Goal.year == year,
    ).all()

    by_status = {goal_status: 0 for goal_status in GOAL_STATUSES}
    for goal in goals:
        by_status[effective_status(goal)] += 1
    total = len(goals)
    completion_rate = round(by_status['completed'] / total * 100, 2) if total else 0

    return {
        'week': week,
        'year': year,
        'total': total,
        'completed': by_status['completed'],
        'inProgress': by_status['in_progress'],
        'notStarted': by_status['not_started'],
        'overdue': by_status['overdue'],
        'completionRate': completion_rate,
    }


@router.get('/{goal_id}')
def get_goal(goal_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    goal = get_goal_or_404(db, goal_id)
    ensure_can_view_student(db, current_user, goal.student_id)
    return {'goal': GoalResponse.from_goal(goal)}


@router.patch('/{goal_id}')
def update_goal(
    goal_id: str,
    data: UpdateGoalRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    goal = get_goal_or_404(db, goal_id)
    ensure_goal_owner(goal, current_user)

    updates = data.updates()
    new_status = updates.pop('status', None)
    for column, value in updates.items():
        setattr(goal, column, value)
    if 'target_date' in updates and goal.target_date is not None:
        goal.week_number, goal.year = iso_week(goal.target_date)
    if new_status is not None:
        was_completed = goal.status == 'completed'
        set_goal_status(goal, new_status)
        if new_status == 'completed' and not was_completed:
            announce_completion(db, goal)

    db.commit()
    db.refresh(goal)
    return {'message': 'Goal updated successfully', 'goal': GoalResponse.from_goal(goal)}


@router.delete('/{goal_id}')
def delete_goal(goal_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    goal = get_goal_or_404(db, goal_id)
    ensure_goal_owner(goal, current_user)
    db.delete(goal)
    db.commit()
    return {'message': 'Goal deleted successfully'}


@router.post('/{goal_id}/milestones', status_code=status.HTTP_201_CREATED)
def add_milestone(
    goal_id: str,
    data: CreateMilestoneRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    goal = get_goal_or_404(db, goal_id)
    ensure_goal_owner(goal, current_user)

    order_index = data.order_index
    if order_index is None:
        order_index = max((milestone.order_index or 0 for milestone in goal.milestones), default=-1) + 1
    milestone = Milestone(goal_id=goal.id, title=data.title, order_index=order_index)
    db.add(milestone)
    db.commit()
    db.refresh(milestone)
    return {'message': 'Milestone added successfully', 'milestone': MilestoneResponse.model_validate(milestone)}


def get_owned_milestone(db: Session, milestone_id: str, current_user: CurrentUser) -> Milestone:
    milestone = db.get(Milestone, milestone_id)
    if milestone is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Milestone not found')
    ensure_goal_owner(milestone.goal, current_user)
    return milestone


@router.patch('/milestones/{milestone_id}')
def update_milestone(
    milestone_id: str,
    data: UpdateMilestoneRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    milestone = get_owned_milestone(db, milestone_id, current_user)

    updates = data.updates()
    if 'is_completed' in updates:
        completed = bool(updates['is_completed'])
        if completed and not milestone.is_completed:
            milestone.completed_at = utcnow()
        elif not completed:
            milestone.completed_at = None
    for column, value in updates.items():
        setattr(milestone, column, value)

    db.commit()
    db.refresh(milestone)
    return {'message': 'Milestone updated successfully', 'milestone': MilestoneResponse.model_validate(milestone)}


@router.delete('/milestones/{milestone_id}')
def delete_milestone(
    milestone_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    milestone = get_owned_milestone(db, milestone_id, current_user)
    db.delete(milestone)
    db.commit()
    return {'message': 'Milestone deleted successfully'}
