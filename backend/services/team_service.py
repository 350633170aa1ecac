"""
Team membership registry.

Teams have exactly one lead and a set of members. Only an admin or the team's
lead may change membership or delete the team. Adding an existing member is an
error; removing a non-member succeeds without doing anything.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

import models
from auth.permissions import (
    Principal,
    TeamAccess,
    get_team_access,
    is_admin,
    require_manage_access,
    require_team_creator,
    require_view_access,
    can_list_available_users,
)
from errors import AlreadyMember, Forbidden, InvalidLead, NotFound, ValidationError

logger = logging.getLogger(__name__)

TEAM_LEAD_ROLES = (models.UserRole.admin, models.UserRole.team_lead)


def load_team(db: Session, team_id: int) -> models.Team:
    """
    Fetch a team with its lead and members.

    Raises:
        NotFound: if the team does not exist
    """
    team = (
        db.query(models.Team)
        .options(
            joinedload(models.Team.lead),
            joinedload(models.Team.members).joinedload(models.TeamMember.user),
        )
        .filter(models.Team.id == team_id)
        .first()
    )
    if team is None:
        logger.info(f"Team {team_id} not found")
        raise NotFound("Team not found")
    return team


def load_team_with_access(db: Session, team_id: int, actor: Principal) -> tuple[models.Team, TeamAccess]:
    team = load_team(db, team_id)
    return team, get_team_access(actor, team, db)


def create_team(db: Session, name: str, description: Optional[str], lead_id: int) -> models.Team:
    """
    Create a team led by lead_id.

    Args:
        db: Database session
        name: Team name (required, trimmed)
        description: Optional description (trimmed, defaults to "")
        lead_id: User who leads the team

    Raises:
        ValidationError: if the name is blank
        InvalidLead: if the lead is missing or is a plain user
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Team name is required")

    lead = db.query(models.User).filter(models.User.id == lead_id).first()
    if lead is None or models.UserRole(lead.role) not in TEAM_LEAD_ROLES:
        logger.info(f"User {lead_id} cannot lead a team")
        raise InvalidLead("Only team leads and admins can create teams")

    team = models.Team(name=name, description=(description or "").strip(), lead_id=lead.id)
    db.add(team)
    db.commit()
    db.refresh(team)

    logger.info(f"Team created: {team.name} (ID: {team.id}) led by user {lead.id}")
    return team


def create_team_for(db: Session, name: str, description: Optional[str], actor: Principal) -> models.Team:
    """Create a team on behalf of the actor, who becomes its lead."""
    require_team_creator(actor)
    return create_team(db, name, description, actor.id)


def list_teams(db: Session, actor: Principal) -> List[models.Team]:
    """
    List teams visible to the actor.

    - admin: all teams
    - team lead: teams they lead
    - user: teams they are a member of
    """
    query = db.query(models.Team).options(
        joinedload(models.Team.lead),
        joinedload(models.Team.members),
    )

    if is_admin(actor):
        teams = query.order_by(models.Team.id).all()
    elif actor.role == models.UserRole.team_lead:
        teams = query.filter(models.Team.lead_id == actor.id).order_by(models.Team.id).all()
    else:
        teams = (
            query.join(models.TeamMember, models.TeamMember.team_id == models.Team.id)
            .filter(models.TeamMember.user_id == actor.id)
            .order_by(models.Team.id)
            .all()
        )

    logger.debug(f"User {actor.id} retrieved {len(teams)} teams")
    return teams


def get_team(db: Session, team_id: int, actor: Principal) -> models.Team:
    """
    Get a team the actor may see.

    Raises:
        NotFound: if the team does not exist
        Forbidden: if the actor is not admin, lead or member
    """
    team, access = load_team_with_access(db, team_id, actor)
    require_view_access(actor, access)
    return team


def list_members(db: Session, team_id: int, actor: Principal) -> List[models.TeamMember]:
    team = get_team(db, team_id, actor)
    return sorted(team.members, key=lambda m: m.user_id)


def list_available_users(db: Session, team_id: int, actor: Principal) -> List[models.User]:
    """
    Users that could be added to the team: everyone except the lead and current members.

    Raises:
        NotFound: if the team does not exist
        Forbidden: for plain users
    """
    if not can_list_available_users(actor):
        logger.info(f"User {actor.id} cannot list available users")
        raise Forbidden("Insufficient permissions")

    team = load_team(db, team_id)
    excluded = set(team.member_ids) | {team.lead_id}

    users = (
        db.query(models.User)
        .filter(models.User.id.notin_(list(excluded)))
        .order_by(models.User.name)
        .all()
    )
    logger.debug(f"User {actor.id} retrieved {len(users)} available users for team {team_id}")
    return users


def add_member(db: Session, team_id: int, user_id: int, requester: Principal) -> models.TeamMember:
    """
    Add a user to the team.

    Raises:
        NotFound: if the team or the user does not exist
        Forbidden: if the requester is neither admin nor the team lead
        AlreadyMember: if the user is already in the team
    """
    logger.debug(f"User {requester.id} adding member {user_id} to team {team_id}")

    team, access = load_team_with_access(db, team_id, requester)
    require_manage_access(requester, access, "Only an admin or the team lead can manage members")

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        logger.info(f"User {user_id} to add was not found")
        raise NotFound("User to add was not found")

    if user_id in team.member_ids:
        logger.info(f"User {user_id} is already a member of team {team_id}")
        raise AlreadyMember("User is already a member of this team")

    membership = models.TeamMember(team_id=team.id, user_id=user.id)
    db.add(membership)
    db.commit()
    db.refresh(membership)

    logger.info(f"User {user_id} added to team {team_id} by user {requester.id}")
    return membership


def remove_member(db: Session, team_id: int, user_id: int, requester: Principal) -> None:
    """
    Remove a user from the team; removing a non-member is a no-op.

    Raises:
        NotFound: if the team does not exist
        Forbidden: if the requester is neither admin nor the team lead
    """
    logger.debug(f"User {requester.id} removing member {user_id} from team {team_id}")

    _, access = load_team_with_access(db, team_id, requester)
    require_manage_access(requester, access, "Only an admin or the team lead can manage members")

    removed = (
        db.query(models.TeamMember)
        .filter(
            models.TeamMember.team_id == team_id,
            models.TeamMember.user_id == user_id,
        )
        .delete(synchronize_session="fetch")
    )
    db.commit()

    if removed:
        logger.info(f"User {user_id} removed from team {team_id} by user {requester.id}")
    else:
        logger.debug(f"User {user_id} was not a member of team {team_id}, nothing removed")


def delete_team(db: Session, team_id: int, requester: Principal) -> None:
    """
    Delete a team together with its memberships, projects and their tasks.

    Raises:
        NotFound: if the team does not exist
        Forbidden: if the requester is neither admin nor the team lead
    """
    logger.debug(f"User {requester.id} deleting team {team_id}")

    team, access = load_team_with_access(db, team_id, requester)
    require_manage_access(requester, access, "Only an admin or the team lead can delete the team")

    project_count = len(team.projects)
    db.delete(team)
    db.commit()

    logger.info(
        f"Team deleted: {team.name} (ID: {team_id}) by user {requester.id}, "
        f"{project_count} projects removed with it"
    )
