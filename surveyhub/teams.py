"""Teams group users and the surveys they file under the team.

A team is visible to its owner and its members. Only the owner renames it
or changes who belongs to it.
"""
import logging
from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from . import models, schemas
from .database import transaction
from .exceptions import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


def _visible_to(user_id: int):
    return or_(
        models.Team.owner_id == user_id,
        models.Team.members.any(models.User.id == user_id),
    )


def get_visible_team(db: Session, team_id: int, user_id: int) -> models.Team:
    team = (
        db.query(models.Team)
        .options(selectinload(models.Team.members))
        .filter(models.Team.id == team_id, _visible_to(user_id))
        .first()
    )
    if team is None:
        raise NotFoundError("Team not found")
    return team


def get_owned_team(db: Session, team_id: int, user_id: int) -> models.Team:
    team = get_visible_team(db, team_id, user_id)
    if team.owner_id != user_id:
        raise ForbiddenError("Only the team owner can change the team")
    return team


def list_teams(db: Session, user_id: int) -> List[models.Team]:
    return db.query(models.Team).filter(_visible_to(user_id)).order_by(models.Team.id).all()


def create_team(db: Session, user_id: int, payload: schemas.TeamCreate) -> models.Team:
    team = models.Team(name=payload.name, owner_id=user_id)
    with transaction(db, "create team"):
        db.add(team)
    logger.info("User %s created team %s", user_id, team.id)
    return get_visible_team(db, team.id, user_id)


def rename_team(db: Session, team_id: int, user_id: int, payload: schemas.TeamUpdate) -> models.Team:
    team = get_owned_team(db, team_id, user_id)
    with transaction(db, "rename team"):
        team.name = payload.name
    return get_visible_team(db, team_id, user_id)


def add_member(db: Session, team_id: int, user_id: int, email: str) -> models.Team:
    team = get_owned_team(db, team_id, user_id)
    member = db.query(models.User).filter(models.User.email == email).first()
    if member is None:
        raise NotFoundError("User not found")
    if member not in team.members:
        with transaction(db, "add team member"):
            team.members.append(member)
        logger.info("Added user %s to team %s", member.id, team_id)
    return team


def remove_member(db: Session, team_id: int, user_id: int, member_id: int) -> models.Team:
    team = get_owned_team(db, team_id, user_id)
    member = db.get(models.User, member_id)
    if member is None:
        raise NotFoundError("User not found")
    if member in team.members:
        with transaction(db, "remove team member"):
            team.members.remove(member)
        logger.info("Removed user %s from team %s", member_id, team_id)
    return team
