from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models import User, WorkspaceRole, WorkspaceType
from registration_service import get_event_or_404
from schemas import (
    WorkspaceCreate,
    WorkspaceDissolveRequest,
    WorkspaceMemberInvite,
    WorkspaceMemberResponse,
    WorkspaceMemberRoleUpdate,
    WorkspaceResponse,
    WorkspaceTreeNode,
)
from security import require_user, require_workspace_manager, require_workspace_member
from time_utils import now_tz
from utils import log_activity
from workspace_service import (
    accept_invitation,
    build_tree,
    create_sub_workspace,
    deactivate_member,
    dissolve,
    get_member_or_404,
    get_root_workspace,
    get_workspace_or_404,
    initiate_wind_down,
    invite_member,
    list_members,
    provision_root,
    update_member_role,
)

router = APIRouter()


@router.post("/events/{event_id}/workspaces/provision", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
def provision_event_workspace(event_id: str, request: Request, user: User = Depends(require_user), db: Session = Depends(get_db)):
    event = get_event_or_404(db, event_id)
    workspace = provision_root(db, event, user)
    log_activity(db, user, "provision_workspace", event_id=event.id, method="POST", path=request.url.path, meta={"workspace_id": workspace.id})
    return workspace


@router.get("/events/{event_id}/workspaces/tree", response_model=WorkspaceTreeNode)
def event_workspace_tree(event_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    get_event_or_404(db, event_id)
    root = get_root_workspace(db, event_id)
    if not root:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace has not been provisioned for this event")
    return build_tree(db, root)


@router.get("/workspaces/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace(workspace_id: str, user: User = Depends(require_workspace_member), db: Session = Depends(get_db)):
    return get_workspace_or_404(db, workspace_id)


@router.get("/workspaces/{workspace_id}/tree", response_model=WorkspaceTreeNode)
def workspace_tree(workspace_id: str, user: User = Depends(require_workspace_member), db: Session = Depends(get_db)):
    return build_tree(db, get_workspace_or_404(db, workspace_id))


@router.post("/workspaces/{workspace_id}/children", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
def add_sub_workspace(
    workspace_id: str,
    payload: WorkspaceCreate,
    request: Request,
    user: User = Depends(require_workspace_manager),
    db: Session = Depends(get_db),
):
    parent = get_workspace_or_404(db, workspace_id)
    workspace = create_sub_workspace(
        db,
        parent,
        user,
        name=payload.name,
        workspace_type=WorkspaceType(payload.workspace_type.value),
        description=payload.description,
        department_id=payload.department_id,
    )
    log_activity(
        db,
        user,
        "create_sub_workspace",
        event_id=workspace.event_id,
        method="POST",
        path=request.url.path,
        meta={"workspace_id": workspace.id, "parent_workspace_id": parent.id},
    )
    return workspace


@router.get("/workspaces/{workspace_id}/members", response_model=List[WorkspaceMemberResponse])
def get_members(
    workspace_id: str,
    include_inactive: bool = False,
    user: User = Depends(require_workspace_member),
    db: Session = Depends(get_db),
):
    return list_members(db, workspace_id, include_inactive)


@router.post("/workspaces/{workspace_id}/members", response_model=WorkspaceMemberResponse, status_code=status.HTTP_201_CREATED)
def invite_workspace_member(
    workspace_id: str,
    payload: WorkspaceMemberInvite,
    request: Request,
    user: User = Depends(require_workspace_manager),
    db: Session = Depends(get_db),
):
    workspace = get_workspace_or_404(db, workspace_id)
    member = invite_member(db, workspace, payload.email, WorkspaceRole(payload.role.value), user)
    log_activity(
        db,
        user,
        "invite_workspace_member",
        event_id=workspace.event_id,
        method="POST",
        path=request.url.path,
        meta={"workspace_id": workspace.id, "member_id": member.id, "role": member.role.value},
    )
    return member


@router.post("/workspaces/{workspace_id}/accept", response_model=WorkspaceMemberResponse)
def accept_workspace_invitation(workspace_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    workspace = get_workspace_or_404(db, workspace_id)
    return accept_invitation(db, workspace, user)


@router.put("/workspaces/{workspace_id}/members/{member_id}/role", response_model=WorkspaceMemberResponse)
def change_member_role(
    workspace_id: str,
    member_id: str,
    payload: WorkspaceMemberRoleUpdate,
    user: User = Depends(require_workspace_manager),
    db: Session = Depends(get_db),
):
    member = get_member_or_404(db, workspace_id, member_id)
    return update_member_role(db, member, WorkspaceRole(payload.role.value))


@router.delete("/workspaces/{workspace_id}/members/{member_id}", response_model=WorkspaceMemberResponse)
def remove_member(
    workspace_id: str,
    member_id: str,
    request: Request,
    user: User = Depends(require_workspace_manager),
    db: Session = Depends(get_db),
):
    member = get_member_or_404(db, workspace_id, member_id)
    member = deactivate_member(db, member)
    log_activity(db, user, "deactivate_workspace_member", method="DELETE", path=request.url.path, meta={"workspace_id": workspace_id, "member_id": member.id})
    return member


@router.post("/workspaces/{workspace_id}/wind-down", response_model=WorkspaceResponse)
def wind_down_workspace(workspace_id: str, request: Request, user: User = Depends(require_workspace_manager), db: Session = Depends(get_db)):
    workspace = initiate_wind_down(db, get_workspace_or_404(db, workspace_id))
    log_activity(db, user, "wind_down_workspace", event_id=workspace.event_id, method="POST", path=request.url.path, meta={"workspace_id": workspace.id})
    return workspace


@router.post("/workspaces/{workspace_id}/dissolve", response_model=WorkspaceResponse)
def dissolve_workspace(
    workspace_id: str,
    request: Request,
    payload: Optional[WorkspaceDissolveRequest] = None,
    user: User = Depends(require_workspace_manager),
    db: Session = Depends(get_db),
):
    workspace = get_workspace_or_404(db, workspace_id)
    event = get_event_or_404(db, workspace.event_id)
    workspace = dissolve(db, workspace, event, now_tz(), payload.retention_period_days if payload else None)
    log_activity(
        db,
        user,
        "dissolve_workspace",
        event_id=event.id,
        method="POST",
        path=request.url.path,
        meta={"workspace_id": workspace.id, "status": workspace.status.value},
    )
    return workspace
