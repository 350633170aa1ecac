"""
Project registry.

Projects belong to exactly one team. Team participants may read them; only an
admin or the team lead may create, update or delete them.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

import models
from auth.permissions import Principal, TeamAccess, get_team_access, require_manage_access, require_view_access
from errors import NotFound, ValidationError
from services.team_service import load_team_with_access

logger = logging.getLogger(__name__)


def parse_project_status(value: Any) -> models.ProjectStatus:
    try:
        return models.ProjectStatus(value)
    except ValueError:
        raise ValidationError("Invalid project status")


def load_project(db: Session, team_id: int, project_id: int, actor: Principal) -> tuple[models.Project, TeamAccess]:
    """
    Fetch a project through its team and compute the actor's team access.

    A project that exists under a different team is reported as missing.

    Raises:
        NotFound: if the project is not part of team_id
    """
    project = (
        db.query(models.Project)
        .filter(models.Project.id == project_id, models.Project.team_id == team_id)
        .first()
    )
    if project is None:
        logger.info(f"Project {project_id} not found in team {team_id}")
        raise NotFound("Project not found")
    return project, get_team_access(actor, project.team, db)


def list_projects(db: Session, team_id: int, actor: Principal) -> List[models.Project]:
    _, access = load_team_with_access(db, team_id, actor)
    require_view_access(actor, access)

    projects = (
        db.query(models.Project)
        .filter(models.Project.team_id == team_id)
        .order_by(models.Project.created_at.desc(), models.Project.id.desc())
        .all()
    )
    logger.debug(f"User {actor.id} retrieved {len(projects)} projects for team {team_id}")
    return projects


def get_project(db: Session, team_id: int, project_id: int, actor: Principal) -> models.Project:
    """
    Get a project visible to the actor.

    Raises:
        NotFound: if the project is not part of the team
        Forbidden: if the actor is not admin, lead or member
    """
    project, access = load_project(db, team_id, project_id, actor)
    require_view_access(actor, access)
    return project


def create_project(
    db: Session,
    team_id: int,
    name: str,
    description: Optional[str],
    status: Optional[Any],
    actor: Principal,
) -> models.Project:
    """
    Create a project under a team.

    Args:
        name: Required, trimmed
        description: Optional, trimmed, defaults to ""
        status: Optional, defaults to active

    Raises:
        ValidationError: blank name or unknown status
        NotFound: if the team does not exist
        Forbidden: if the actor is neither admin nor the team lead
    """
    logger.debug(f"User {actor.id} creating project '{name}' in team {team_id}")

    name = (name or "").strip()
    if not name:
        raise ValidationError("Project name is required")
    project_status = parse_project_status(status) if status else models.ProjectStatus.active

    _, access = load_team_with_access(db, team_id, actor)
    require_manage_access(actor, access, "Only an admin or the team lead can create projects")

    project = models.Project(
        name=name,
        description=(description or "").strip(),
        status=project_status,
        team_id=team_id,
    )
    db.add(project)
    db.commit()
    db.refresh(project)

    logger.info(f"Project created: {project.name} (ID: {project.id}) in team {team_id} by user {actor.id}")
    return project


def update_project(
    db: Session, team_id: int, project_id: int, patch: Dict[str, Any], actor: Principal
) -> models.Project:
    """
    Apply a partial update; keys absent from patch are left untouched.

    Raises:
        NotFound: if the project is not part of the team
        Forbidden: if the actor is neither admin nor the team lead
        ValidationError: blank name or unknown status
    """
    logger.debug(f"User {actor.id} updating project {project_id} with fields {sorted(patch)}")

    project, access = load_project(db, team_id, project_id, actor)
    require_manage_access(actor, access, "Only an admin or the team lead can update projects")

    changes = {}
    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise ValidationError("Project name is required")
        changes["name"] = name
    if "description" in patch:
        changes["description"] = (patch["description"] or "").strip()
    if "status" in patch:
        changes["status"] = parse_project_status(patch["status"])

    for key, value in changes.items():
        setattr(project, key, value)

    db.commit()
    db.refresh(project)

    logger.info(f"Project {project_id} updated by user {actor.id}")
    return project


def delete_project(db: Session, team_id: int, project_id: int, actor: Principal) -> None:
    """
    Delete a project and, through the ORM cascade, all of its tasks.

    Raises:
        NotFound: if the project is not part of the team
        Forbidden: if the actor is neither admin nor the team lead
    """
    project, access = load_project(db, team_id, project_id, actor)
    require_manage_access(actor, access, "Only an admin or the team lead can delete projects")

    db.delete(project)
    db.commit()

    logger.info(f"Project {project_id} deleted by user {actor.id}")
