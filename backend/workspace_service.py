import copy
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    Event,
    EventStatus,
    MemberStatus,
    User,
    Workspace,
    WorkspaceRole,
    WorkspaceStatus,
    WorkspaceTeamMember,
    WorkspaceType,
)
from security import can_manage_event
from time_utils import as_utc

logger = logging.getLogger(__name__)

CHILD_TYPE = {
    WorkspaceType.ROOT: WorkspaceType.DEPARTMENT,
    WorkspaceType.DEPARTMENT: WorkspaceType.COMMITTEE,
    WorkspaceType.COMMITTEE: WorkspaceType.TEAM,
}

DEFAULT_ROOT_SETTINGS = {
    "publish_requirements": {
        "require_landing_page": False,
        "require_ticketing_config": False,
        "require_seo": False,
        "require_accessibility": False,
    },
    "require_event_publish_approval": False,
    "publish_approver_roles": [WorkspaceRole.WORKSPACE_OWNER.value],
}

DEFAULT_RETENTION_DAYS = 30


def get_workspace_or_404(db: Session, workspace_id: str) -> Workspace:
    workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first()
    if not workspace:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    return workspace


def get_root_workspace(db: Session, event_id: str) -> Optional[Workspace]:
    return (
        db.query(Workspace)
        .filter(Workspace.event_id == event_id, Workspace.workspace_type == WorkspaceType.ROOT)
        .first()
    )


def validate_child_type(parent: Workspace, child_type: WorkspaceType) -> None:
    expected = CHILD_TYPE.get(parent.workspace_type)
    if expected is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="TEAM workspaces cannot have sub-workspaces")
    if child_type != expected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"A {parent.workspace_type.value} workspace can only contain {expected.value} workspaces",
        )


def _add_member(db: Session, workspace: Workspace, user_id: str, role: WorkspaceRole, invited_by: Optional[str]) -> WorkspaceTeamMember:
    member = WorkspaceTeamMember(
        workspace_id=workspace.id,
        user_id=user_id,
        role=role,
        status=MemberStatus.ACTIVE,
        invited_by=invited_by,
    )
    db.add(member)
    return member


def provision_root(db: Session, event: Event, user: User) -> Workspace:
    if not can_manage_event(user, event):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the event organizer can provision a workspace")
    existing = get_root_workspace(db, event.id)
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f'This event already has a root workspace "{existing.name}"',
        )

    workspace = Workspace(
        event_id=event.id,
        name=f"{event.title} Workspace",
        workspace_type=WorkspaceType.ROOT,
        status=WorkspaceStatus.PROVISIONING,
        settings=copy.deepcopy(DEFAULT_ROOT_SETTINGS),
        organizer_id=user.id,
    )
    db.add(workspace)
    db.flush()
    _add_member(db, workspace, user.id, WorkspaceRole.WORKSPACE_OWNER, invited_by=None)
    workspace.status = WorkspaceStatus.ACTIVE
    db.commit()
    db.refresh(workspace)
    logger.info("Provisioned root workspace %s for event %s", workspace.id, event.id)
    return workspace


def create_sub_workspace(
    db: Session,
    parent: Workspace,
    user: User,
    *,
    name: str,
    workspace_type: WorkspaceType,
    description: Optional[str] = None,
    department_id: Optional[str] = None,
) -> Workspace:
    if parent.status != WorkspaceStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Parent workspace is not active")
    validate_child_type(parent, workspace_type)

    workspace = Workspace(
        event_id=parent.event_id,
        parent_workspace_id=parent.id,
        name=name.strip(),
        description=description,
        workspace_type=workspace_type,
        department_id=department_id,
        status=WorkspaceStatus.ACTIVE,
        organizer_id=user.id,
    )
    db.add(workspace)
    db.flush()
    _add_member(db, workspace, user.id, WorkspaceRole.TEAM_LEAD, invited_by=user.id)
    db.commit()
    db.refresh(workspace)
    return workspace


def build_tree(db: Session, root: Workspace) -> dict:
    rows = (
        db.query(Workspace)
        .filter(Workspace.event_id == root.event_id)
        .order_by(Workspace.created_at.asc(), Workspace.name.asc())
        .all()
    )
    children: Dict[Optional[str], List[Workspace]] = {}
    for row in rows:
        children.setdefault(row.parent_workspace_id, []).append(row)

    def node(workspace: Workspace, seen: set) -> dict:
        seen.add(workspace.id)
        return {
            "id": workspace.id,
            "name": workspace.name,
            "workspace_type": workspace.workspace_type.value,
            "status": workspace.status.value,
            "children": [node(child, seen) for child in children.get(workspace.id, []) if child.id not in seen],
        }

    return node(root, set())


def list_members(db: Session, workspace_id: str, include_inactive: bool = False) -> List[WorkspaceTeamMember]:
    query = db.query(WorkspaceTeamMember).filter(WorkspaceTeamMember.workspace_id == workspace_id)
    if not include_inactive:
        query = query.filter(WorkspaceTeamMember.status != MemberStatus.INACTIVE)
    return query.order_by(WorkspaceTeamMember.joined_at.asc()).all()


def invite_member(db: Session, workspace: Workspace, email: str, role: WorkspaceRole, invited_by: User) -> WorkspaceTeamMember:
    user = db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No user with that email")
    if role == WorkspaceRole.WORKSPACE_OWNER:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Workspace owner cannot be assigned by invitation")

    existing = (
        db.query(WorkspaceTeamMember)
        .filter(WorkspaceTeamMember.workspace_id == workspace.id, WorkspaceTeamMember.user_id == user.id)
        .first()
    )
    if existing and existing.status != MemberStatus.INACTIVE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User is already a member of this workspace")
    if existing:
        existing.role = role
        existing.status = MemberStatus.INVITED
        existing.invited_by = invited_by.id
        member = existing
    else:
        member = WorkspaceTeamMember(
            workspace_id=workspace.id,
            user_id=user.id,
            role=role,
            status=MemberStatus.INVITED,
            invited_by=invited_by.id,
        )
        db.add(member)
    db.commit()
    db.refresh(member)
    return member


def get_member_or_404(db: Session, workspace_id: str, member_id: str) -> WorkspaceTeamMember:
    member = (
        db.query(WorkspaceTeamMember)
        .filter(WorkspaceTeamMember.id == member_id, WorkspaceTeamMember.workspace_id == workspace_id)
        .first()
    )
    if not member:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return member


def accept_invitation(db: Session, workspace: Workspace, user: User) -> WorkspaceTeamMember:
    member = (
        db.query(WorkspaceTeamMember)
        .filter(
            WorkspaceTeamMember.workspace_id == workspace.id,
            WorkspaceTeamMember.user_id == user.id,
            WorkspaceTeamMember.status == MemberStatus.INVITED,
        )
        .first()
    )
    if not member:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No pending invitation")
    member.status = MemberStatus.ACTIVE
    db.commit()
    db.refresh(member)
    return member


def _ensure_not_last_owner(db: Session, member: WorkspaceTeamMember) -> None:
    if member.role != WorkspaceRole.WORKSPACE_OWNER:
        return
    owners = (
        db.query(func.count(WorkspaceTeamMember.id))
        .filter(
            WorkspaceTeamMember.workspace_id == member.workspace_id,
            WorkspaceTeamMember.role == WorkspaceRole.WORKSPACE_OWNER,
            WorkspaceTeamMember.status == MemberStatus.ACTIVE,
        )
        .scalar()
    ) or 0
    if owners <= 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Workspace must keep at least one owner")


def update_member_role(db: Session, member: WorkspaceTeamMember, role: WorkspaceRole) -> WorkspaceTeamMember:
    if member.status == MemberStatus.INACTIVE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Member is inactive")
    if member.role != role:
        _ensure_not_last_owner(db, member)
    member.role = role
    db.commit()
    db.refresh(member)
    return member


def deactivate_member(db: Session, member: WorkspaceTeamMember) -> WorkspaceTeamMember:
    if member.status == MemberStatus.INACTIVE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Member is already inactive")
    _ensure_not_last_owner(db, member)
    member.status = MemberStatus.INACTIVE
    db.commit()
    db.refresh(member)
    return member


def initiate_wind_down(db: Session, workspace: Workspace) -> Workspace:
    if workspace.status != WorkspaceStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only active workspaces can be wound down")
    workspace.status = WorkspaceStatus.WINDING_DOWN
    db.commit()
    db.refresh(workspace)
    return workspace


def event_has_concluded(event: Event, now: datetime) -> bool:
    if event.status in (EventStatus.COMPLETED, EventStatus.CANCELLED):
        return True
    return bool(event.end_date and as_utc(event.end_date) <= as_utc(now))


def dissolve(db: Session, workspace: Workspace, event: Event, now: datetime, retention_days: Optional[int] = None) -> Workspace:
    if workspace.status == WorkspaceStatus.DISSOLVED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Workspace is already dissolved")
    if not event_has_concluded(event, now):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Workspace can only be dissolved after the event has ended")

    days = DEFAULT_RETENTION_DAYS if retention_days is None else int(retention_days)
    settings = dict(workspace.settings or {})
    settings["retention_period_days"] = days
    settings["dissolution_requested_at"] = as_utc(now).isoformat()
    workspace.settings = settings

    if days == 0:
        workspace.status = WorkspaceStatus.DISSOLVED
        (
            db.query(WorkspaceTeamMember)
            .filter(WorkspaceTeamMember.workspace_id == workspace.id)
            .update({WorkspaceTeamMember.status: MemberStatus.INACTIVE}, synchronize_session=False)
        )
    else:
        workspace.status = WorkspaceStatus.WINDING_DOWN
    db.commit()
    db.refresh(workspace)
    logger.info("Workspace %s dissolution requested (retention %s days)", workspace.id, days)
    return workspace
