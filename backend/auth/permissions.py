"""
Team-scoped permission checking utilities.

Every decision is a pure function of the acting principal and a TeamAccess
snapshot (the team's lead id and whether the principal belongs to the team).
The require_* helpers wrap a decision and raise Forbidden when it is negative.

Permission matrix:
- Admin: everything
- Team lead: everything inside their team
- Team member: view team resources, create/update tasks, delete own tasks
- Anyone else: nothing inside the team
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

import models
from errors import Forbidden

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated actor, passed explicitly into every core operation."""

    id: int
    role: models.UserRole
    email: str = ""

    @classmethod
    def from_user(cls, user: models.User) -> "Principal":
        return cls(id=user.id, role=models.UserRole(user.role), email=user.email)


@dataclass(frozen=True)
class TeamAccess:
    """What the policy needs to know about a team relative to one principal."""

    team_id: int
    lead_id: int
    is_member: bool


def get_team_access(principal: Principal, team: models.Team, db: Session) -> TeamAccess:
    """
    Build the TeamAccess snapshot for a principal.

    Args:
        principal: Acting user
        team: Team the resource belongs to
        db: Database session

    Returns:
        TeamAccess with the team's lead id and the principal's membership flag
    """
    is_member = (
        db.query(models.TeamMember)
        .filter(
            models.TeamMember.team_id == team.id,
            models.TeamMember.user_id == principal.id,
        )
        .first()
    ) is not None

    logger.debug(
        f"Team access for user {principal.id} on team {team.id}: "
        f"lead={team.lead_id == principal.id}, member={is_member}"
    )
    return TeamAccess(team_id=team.id, lead_id=team.lead_id, is_member=is_member)


# ============== Decisions ==============

def is_admin(principal: Principal) -> bool:
    return principal.role == models.UserRole.admin


def is_team_lead(principal: Principal, access: TeamAccess) -> bool:
    return access.lead_id == principal.id


def is_team_member(principal: Principal, access: TeamAccess) -> bool:
    return access.is_member


def can_view_team_scoped_resource(principal: Principal, access: TeamAccess) -> bool:
    return is_admin(principal) or is_team_lead(principal, access) or is_team_member(principal, access)


def can_manage_team_resources(principal: Principal, access: TeamAccess) -> bool:
    """Project create/update/delete, membership changes and team deletion."""
    return is_admin(principal) or is_team_lead(principal, access)


def can_create_or_update_task(principal: Principal, access: TeamAccess) -> bool:
    return is_admin(principal) or is_team_lead(principal, access) or is_team_member(principal, access)


def can_delete_task(principal: Principal, access: TeamAccess, task_author_id: Optional[int]) -> bool:
    return (
        is_admin(principal)
        or is_team_lead(principal, access)
        or (task_author_id is not None and principal.id == task_author_id)
    )


def can_create_team(principal: Principal) -> bool:
    return principal.role in (models.UserRole.admin, models.UserRole.team_lead)


def can_list_available_users(principal: Principal) -> bool:
    return principal.role in (models.UserRole.admin, models.UserRole.team_lead)


# ============== Enforcement ==============

def require_view_access(principal: Principal, access: TeamAccess) -> None:
    """
    Require the principal to be able to see resources of the team.

    Raises:
        Forbidden: if the principal is neither admin, lead nor member
    """
    if not can_view_team_scoped_resource(principal, access):
        logger.info(f"User {principal.id} has no access to team {access.team_id}")
        raise Forbidden("Insufficient permissions")


def require_manage_access(principal: Principal, access: TeamAccess, message: str = None) -> None:
    """
    Require admin or team lead rights on the team.

    Raises:
        Forbidden: if the principal is neither admin nor the team lead
    """
    if not can_manage_team_resources(principal, access):
        logger.info(f"User {principal.id} cannot manage team {access.team_id}")
        raise Forbidden(message or "Only an admin or the team lead can do this")


def require_task_write_access(principal: Principal, access: TeamAccess, message: str = None) -> None:
    """
    Require the principal to be a team participant (admin, lead or member).

    Raises:
        Forbidden: if the principal does not participate in the team
    """
    if not can_create_or_update_task(principal, access):
        logger.info(f"User {principal.id} cannot modify tasks of team {access.team_id}")
        raise Forbidden(message or "Insufficient permissions to modify tasks")


def require_task_delete_access(principal: Principal, access: TeamAccess, task: models.Task) -> None:
    """
    Require admin, team lead or authorship of the task.

    Raises:
        Forbidden: otherwise
    """
    if not can_delete_task(principal, access, task.author_id):
        logger.info(f"User {principal.id} cannot delete task {task.id} (author {task.author_id})")
        raise Forbidden("Only an admin, the team lead or the task author can delete tasks")


def require_team_creator(principal: Principal) -> None:
    """
    Require a role that may create teams.

    Raises:
        Forbidden: for plain users
    """
    if not can_create_team(principal):
        logger.info(f"User {principal.id} with role '{principal.role.value}' cannot create teams")
        raise Forbidden("Insufficient permissions to create a team")
