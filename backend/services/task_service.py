"""
Task graph engine.

Tasks live in a project and form two graphs on top of it:
- a parent/subtask forest, which must stay acyclic
- a symmetric "related" relation, stored as a pair of directed edges

Every mutation validates permissions, team membership of assignees and
observers, and the referential integrity of parent and related tasks before
anything is written, then commits once.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

import models
from auth.permissions import (
    Principal,
    TeamAccess,
    require_task_delete_access,
    require_task_write_access,
    require_view_access,
)
from errors import (
    CyclicDependency,
    InvalidAssignee,
    InvalidObserver,
    InvalidParent,
    InvalidRelatedTask,
    NotFound,
    Unexpected,
    ValidationError,
)
from services.project_service import load_project

logger = logging.getLogger(__name__)

TASK_NUMBER_RETRIES = int(os.environ.get("TASK_NUMBER_RETRIES", "3"))

TASK_DETAIL_OPTIONS = (
    selectinload(models.Task.author),
    selectinload(models.Task.assignees),
    selectinload(models.Task.observers),
    selectinload(models.Task.parent),
    selectinload(models.Task.subtasks),
    selectinload(models.Task.related_tasks),
)


# ============== Helper Functions ==============

def _unique(ids: Iterable[int]) -> List[int]:
    """Drop duplicate ids, keeping first-seen order."""
    return list(dict.fromkeys(ids))


def parse_priority(value: Any) -> models.TaskPriority:
    try:
        return models.TaskPriority(value)
    except ValueError:
        raise ValidationError("Invalid priority")


def parse_status(value: Any) -> models.TaskStatus:
    try:
        return models.TaskStatus(value)
    except ValueError:
        raise ValidationError("Invalid status")


def parse_title(value: Optional[str]) -> str:
    title = (value or "").strip()
    if not title:
        raise ValidationError("Task title is required")
    return title


def team_participant_ids(team: models.Team) -> set[int]:
    """The lead plus every member: the only users a task may be attached to."""
    return {team.lead_id} | set(team.member_ids)


def validate_participants(user_ids: List[int], team: models.Team, error_cls: type) -> None:
    """
    Check that every id belongs to the team (lead or member).

    An empty list needs no validation.

    Raises:
        error_cls: if any id is outside the team
    """
    if not user_ids:
        return
    outsiders = set(user_ids) - team_participant_ids(team)
    if outsiders:
        logger.info(f"Users {sorted(outsiders)} are not participants of team {team.id}")
        raise error_cls()


def resolve_parent(db: Session, project_id: int, parent_id: int) -> models.Task:
    """
    Raises:
        InvalidParent: if parent_id is not a task of the same project
    """
    parent = (
        db.query(models.Task)
        .filter(models.Task.id == parent_id, models.Task.project_id == project_id)
        .first()
    )
    if parent is None:
        logger.info(f"Parent task {parent_id} not found in project {project_id}")
        raise InvalidParent()
    return parent


def has_circular_parent(db: Session, task_id: int, candidate_parent: models.Task) -> bool:
    """
    Check whether making candidate_parent the parent of task_id closes a cycle.

    Walks up the ancestor chain of candidate_parent. The walk ends at a task
    without parent or at a parent id that no longer resolves.

    Returns True if task_id is the candidate itself or one of its ancestors.
    """
    logger.debug(f"Checking circular parent: task_id={task_id}, parent_id={candidate_parent.id}")

    if candidate_parent.id == task_id:
        logger.info(f"Self-reference detected: task {task_id} cannot be its own parent")
        return True

    visited = {candidate_parent.id}
    current = candidate_parent

    while current.parent_id is not None:
        if current.parent_id == task_id:
            logger.info(f"Circular parent detected: task {task_id} is an ancestor of task {candidate_parent.id}")
            return True
        if current.parent_id in visited:
            # Pre-existing loop that does not involve task_id
            logger.warning(f"Ancestor chain of task {candidate_parent.id} loops at task {current.parent_id}")
            break
        visited.add(current.parent_id)

        current = db.query(models.Task).filter(models.Task.id == current.parent_id).first()
        if current is None:
            break

    logger.debug(f"No circular parent detected for task {task_id} with parent {candidate_parent.id}")
    return False


def resolve_related(db: Session, project_id: int, related_ids: List[int]) -> List[models.Task]:
    """
    Raises:
        InvalidRelatedTask: if any id is not a task of the same project
    """
    if not related_ids:
        return []
    related = (
        db.query(models.Task)
        .filter(models.Task.id.in_(related_ids), models.Task.project_id == project_id)
        .order_by(models.Task.task_number)
        .all()
    )
    if len(related) != len(related_ids):
        missing = set(related_ids) - {t.id for t in related}
        logger.info(f"Related tasks {sorted(missing)} not found in project {project_id}")
        raise InvalidRelatedTask()
    return related


def load_users(db: Session, user_ids: List[int]) -> List[models.User]:
    if not user_ids:
        return []
    return db.query(models.User).filter(models.User.id.in_(user_ids)).order_by(models.User.id).all()


def next_task_number(db: Session, project_id: int) -> int:
    """
    One past the highest number the project has used.

    The project keeps a high-water mark so the number of a deleted task is
    never handed out again.
    """
    current = db.query(func.max(models.Task.task_number)).filter(models.Task.project_id == project_id).scalar()
    high_water = (
        db.query(models.Project.last_task_number).filter(models.Project.id == project_id).scalar()
    )
    return max(current or 0, high_water or 0) + 1


def record_task_number(db: Session, project_id: int, task_number: int) -> None:
    # Leaves updated_at alone: issuing a number does not edit the project
    db.execute(
        update(models.Project)
        .where(models.Project.id == project_id)
        .values(last_task_number=task_number, updated_at=models.Project.updated_at)
        .execution_options(synchronize_session=False)
    )


def replace_collection(collection: list, new_items: List[Any]) -> None:
    """Full set replacement: remove what is no longer wanted, then add what is missing."""
    wanted = {item.id for item in new_items}
    for item in list(collection):
        if item.id not in wanted:
            collection.remove(item)

    present = {item.id for item in collection}
    for item in new_items:
        if item.id not in present:
            collection.append(item)


def replace_related(task: models.Task, new_related: List[models.Task]) -> None:
    """Set replacement on the related relation, keeping the mirror edges in step."""
    wanted = {t.id for t in new_related}
    for other in list(task.related_tasks):
        if other.id not in wanted:
            task.related_tasks.remove(other)
            if task in other.related_tasks:
                other.related_tasks.remove(task)

    present = {t.id for t in task.related_tasks}
    for other in new_related:
        if other.id not in present:
            task.related_tasks.append(other)
        if task not in other.related_tasks:
            other.related_tasks.append(task)


def load_task(
    db: Session, team_id: int, project_id: int, task_id: int, actor: Principal
) -> tuple[models.Task, TeamAccess]:
    """
    Fetch a task through its project and team.

    Raises:
        NotFound: if the project is not in the team or the task is not in the project
    """
    project, access = load_project(db, team_id, project_id, actor)

    task = (
        db.query(models.Task)
        .filter(models.Task.id == task_id, models.Task.project_id == project.id)
        .first()
    )
    if task is None:
        logger.info(f"Task {task_id} not found in project {project_id}")
        raise NotFound("Task not found")
    return task, access


def load_task_detail(db: Session, task_id: int) -> models.Task:
    """Reload a task with every relation the API exposes."""
    return (
        db.query(models.Task)
        .options(*TASK_DETAIL_OPTIONS)
        .filter(models.Task.id == task_id)
        .one()
    )


# ============== Operations ==============

def list_tasks(db: Session, team_id: int, project_id: int, actor: Principal) -> List[models.Task]:
    project, access = load_project(db, team_id, project_id, actor)
    require_view_access(actor, access)

    tasks = (
        db.query(models.Task)
        .options(*TASK_DETAIL_OPTIONS)
        .filter(models.Task.project_id == project.id)
        .order_by(models.Task.created_at.desc(), models.Task.id.desc())
        .all()
    )
    logger.debug(f"User {actor.id} retrieved {len(tasks)} tasks for project {project_id}")
    return tasks


def get_task(db: Session, team_id: int, project_id: int, task_id: int, actor: Principal) -> models.Task:
    task, access = load_task(db, team_id, project_id, task_id, actor)
    require_view_access(actor, access)
    return load_task_detail(db, task.id)


def create_task(
    db: Session,
    team_id: int,
    project_id: int,
    title: str,
    actor: Principal,
    description: Optional[str] = None,
    priority: Optional[Any] = None,
    assignee_ids: Optional[List[int]] = None,
    observer_ids: Optional[List[int]] = None,
    parent_id: Optional[int] = None,
    related_task_ids: Optional[List[int]] = None,
) -> models.Task:
    """
    Create a task in a project.

    The task gets the next per-project task number and the actor as author.
    Related tasks are linked in both directions.

    Raises:
        NotFound: project not in team
        Forbidden: actor is not a team participant
        ValidationError: blank title or unknown priority
        InvalidAssignee / InvalidObserver: user outside the team
        InvalidParent: parent not in the project
        InvalidRelatedTask: related task not in the project
        Unexpected: task number could not be allocated after retries
    """
    logger.info(f"User {actor.id} creating task '{title}' in project {project_id}")

    project, access = load_project(db, team_id, project_id, actor)
    require_task_write_access(actor, access, "Insufficient permissions to create a task")

    title = parse_title(title)
    task_priority = parse_priority(priority) if priority else models.TaskPriority.medium

    assignee_ids = _unique(assignee_ids or [])
    observer_ids = _unique(observer_ids or [])
    validate_participants(assignee_ids, project.team, InvalidAssignee)
    validate_participants(observer_ids, project.team, InvalidObserver)

    parent = resolve_parent(db, project.id, parent_id) if parent_id is not None else None
    related = resolve_related(db, project.id, _unique(related_task_ids or []))

    assignees = load_users(db, assignee_ids)
    observers = load_users(db, observer_ids)

    # Read-max-then-insert can race; the unique constraint turns a collision into a retry
    for attempt in range(1, TASK_NUMBER_RETRIES + 1):
        task_number = next_task_number(db, project.id)
        task = models.Task(
            task_number=task_number,
            title=title,
            description=(description or "").strip(),
            priority=task_priority,
            status=models.TaskStatus.todo,
            project_id=project.id,
            author_id=actor.id,
            parent=parent,
        )
        db.add(task)
        task.assignees = list(assignees)
        task.observers = list(observers)
        replace_related(task, related)
        record_task_number(db, project.id, task_number)

        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(
                f"Task number {task_number} collided in project {project.id} "
                f"(attempt {attempt}/{TASK_NUMBER_RETRIES}): {e.orig}"
            )
            continue
        break
    else:
        raise Unexpected("Could not allocate a task number, please retry")

    logger.info(f"Task created successfully: id={task.id}, number={task.task_number}")
    return load_task_detail(db, task.id)


def update_task(
    db: Session,
    team_id: int,
    project_id: int,
    task_id: int,
    patch: Dict[str, Any],
    actor: Principal,
) -> models.Task:
    """
    Apply a partial update to a task.

    Keys absent from patch are left untouched. Relation keys (assignee_ids,
    observer_ids, related_task_ids) replace the whole set; parent_id None
    detaches the task from its parent.

    Raises:
        NotFound: task not in project, or project not in team
        Forbidden: actor is not a team participant
        ValidationError: blank title, unknown priority or status
        InvalidAssignee / InvalidObserver: user outside the team
        InvalidParent: parent not in the project
        CyclicDependency: parent is the task itself or one of its descendants
        InvalidRelatedTask: related task not in the project
    """
    logger.info(f"User {actor.id} updating task {task_id} with fields {sorted(patch)}")

    task, access = load_task(db, team_id, project_id, task_id, actor)
    require_task_write_access(actor, access, "Insufficient permissions to update the task")

    changes: Dict[str, Any] = {}

    # Scalar fields
    if "title" in patch:
        changes["title"] = parse_title(patch["title"])
    if "description" in patch:
        changes["description"] = (patch["description"] or "").strip()
    if "priority" in patch:
        changes["priority"] = parse_priority(patch["priority"])
    if "status" in patch:
        # Any status may follow any other
        changes["status"] = parse_status(patch["status"])

    team = task.project.team

    assignees = observers = related = None
    if "assignee_ids" in patch:
        assignee_ids = _unique(patch["assignee_ids"] or [])
        validate_participants(assignee_ids, team, InvalidAssignee)
        assignees = load_users(db, assignee_ids)
    if "observer_ids" in patch:
        observer_ids = _unique(patch["observer_ids"] or [])
        validate_participants(observer_ids, team, InvalidObserver)
        observers = load_users(db, observer_ids)

    if "parent_id" in patch:
        parent_id = patch["parent_id"]
        if parent_id is None:
            changes["parent_id"] = None
        else:
            if parent_id == task.id:
                logger.info(f"Task {task.id} cannot be its own parent")
                raise CyclicDependency("A task cannot be its own parent")
            parent = resolve_parent(db, task.project_id, parent_id)
            if has_circular_parent(db, task.id, parent):
                raise CyclicDependency()
            changes["parent_id"] = parent.id

    if "related_task_ids" in patch:
        related_ids = [i for i in _unique(patch["related_task_ids"] or []) if i != task.id]
        related = resolve_related(db, task.project_id, related_ids)

    # Everything is valid; apply in one transaction
    for key, value in changes.items():
        setattr(task, key, value)
    if assignees is not None:
        replace_collection(task.assignees, assignees)
    if observers is not None:
        replace_collection(task.observers, observers)
    if related is not None:
        replace_related(task, related)

    db.commit()

    logger.info(f"Task {task_id} updated successfully")
    return load_task_detail(db, task_id)


def delete_task(db: Session, team_id: int, project_id: int, task_id: int, actor: Principal) -> None:
    """
    Delete a task.

    Subtasks are kept and detached (parent set to null); the task disappears
    from every related set; assignee and observer links are dropped.

    Raises:
        NotFound: task not in project, or project not in team
        Forbidden: actor is not admin, team lead or the task's author
    """
    logger.debug(f"User {actor.id} deleting task {task_id}")

    task, access = load_task(db, team_id, project_id, task_id, actor)
    require_task_delete_access(actor, access, task)

    for subtask in list(task.subtasks):
        subtask.parent_id = None

    # Mirror edges pointing at this task
    referencing_ids = db.execute(
        select(models.task_relations.c.task_id).where(models.task_relations.c.related_task_id == task.id)
    ).scalars().all()
    for other in db.query(models.Task).filter(models.Task.id.in_(referencing_ids)).all():
        if task in other.related_tasks:
            other.related_tasks.remove(task)
    task.related_tasks.clear()

    db.delete(task)
    db.commit()

    logger.info(f"Task {task_id} deleted by user {actor.id}")
