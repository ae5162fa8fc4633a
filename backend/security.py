from typing import Optional, Set
from fastapi import Depends, HTTPException, status
from fastapi import Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from auth import decode_token, get_current_user, user_from_payload
from models import Event, MemberStatus, User, UserRole, Workspace, WorkspaceRole, WorkspaceTeamMember

MANAGER_ROLES: Set[WorkspaceRole] = {
    WorkspaceRole.WORKSPACE_OWNER,
    WorkspaceRole.TEAM_LEAD,
    WorkspaceRole.EVENT_COORDINATOR,
}


def is_admin(user: Optional[User]) -> bool:
    return bool(user and user.role == UserRole.ADMIN)


def can_manage_event(user: Optional[User], event: Event) -> bool:
    return is_admin(user) or bool(user and event.organizer_id == user.id)


def require_user(user: User = Depends(get_current_user)) -> User:
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def require_organizer(user: User = Depends(get_current_user)) -> User:
    if user.role not in (UserRole.ORGANIZER, UserRole.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organizer access required")
    return user


def require_event_organizer(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    event_id = request.path_params.get("event_id")
    if not event_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event id")
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    if not can_manage_event(user, event):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the event organizer can do this")
    return user


def get_active_membership(db: Session, workspace_id: str, user_id: str) -> Optional[WorkspaceTeamMember]:
    return (
        db.query(WorkspaceTeamMember)
        .filter(
            WorkspaceTeamMember.workspace_id == workspace_id,
            WorkspaceTeamMember.user_id == user_id,
            WorkspaceTeamMember.status == MemberStatus.ACTIVE,
        )
        .first()
    )


def _load_workspace(db: Session, request: Request) -> Workspace:
    workspace_id = request.path_params.get("workspace_id")
    if not workspace_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing workspace id")
    workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first()
    if not workspace:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    return workspace


def require_workspace_member(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    workspace = _load_workspace(db, request)
    if is_admin(user):
        return user
    if not get_active_membership(db, workspace.id, user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied: User is not a member of this workspace")
    return user


def require_workspace_manager(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    workspace = _load_workspace(db, request)
    if is_admin(user):
        return user
    membership = get_active_membership(db, workspace.id, user.id)
    if not membership:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied: User is not a member of this workspace")
    if membership.role not in MANAGER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied: User cannot manage this workspace")
    return user


optional_bearer = HTTPBearer(auto_error=False)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    db: Session = Depends(get_db),
) -> Optional[User]:
    if not credentials:
        return None
    try:
        payload = decode_token(credentials.credentials)
    except HTTPException:
        return None
    return user_from_payload(db, payload)
