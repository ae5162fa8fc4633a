from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from conftest import auth_headers, make_user
from models import EventStatus, MemberStatus, WorkspaceRole, WorkspaceStatus, WorkspaceTeamMember, WorkspaceType
import workspace_service
from workspace_service import (
    build_tree,
    create_sub_workspace,
    deactivate_member,
    dissolve,
    event_has_concluded,
    initiate_wind_down,
    invite_member,
    provision_root,
    validate_child_type,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_provision_root_creates_active_workspace_with_owner(db, event, organizer):
    workspace = provision_root(db, event, organizer)
    assert workspace.status == WorkspaceStatus.ACTIVE
    assert workspace.workspace_type == WorkspaceType.ROOT
    assert workspace.name == "Hack Night Workspace"
    assert workspace.settings["publish_requirements"]["require_landing_page"] is False
    owner = db.query(WorkspaceTeamMember).one()
    assert owner.user_id == organizer.id
    assert owner.role == WorkspaceRole.WORKSPACE_OWNER

    with pytest.raises(HTTPException) as exc:
        provision_root(db, event, organizer)
    assert exc.value.status_code == 409


def test_root_settings_do_not_share_defaults(db, event, organizer):
    workspace = provision_root(db, event, organizer)
    assert workspace.settings["publish_requirements"] is not workspace_service.DEFAULT_ROOT_SETTINGS["publish_requirements"]
    assert workspace.settings["publish_approver_roles"] is not workspace_service.DEFAULT_ROOT_SETTINGS["publish_approver_roles"]

    workspace.settings["publish_requirements"]["require_landing_page"] = True
    workspace.settings["publish_approver_roles"].append("EVENT_COORDINATOR")
    assert workspace_service.DEFAULT_ROOT_SETTINGS["publish_requirements"]["require_landing_page"] is False
    assert workspace_service.DEFAULT_ROOT_SETTINGS["publish_approver_roles"] == [WorkspaceRole.WORKSPACE_OWNER.value]


def test_provision_root_requires_event_organizer(db, event, participant):
    with pytest.raises(HTTPException) as exc:
        provision_root(db, event, participant)
    assert exc.value.status_code == 403


def test_child_type_must_be_one_level_down(db, event, organizer):
    root = provision_root(db, event, organizer)
    with pytest.raises(HTTPException) as exc:
        validate_child_type(root, WorkspaceType.TEAM)
    assert exc.value.detail == "A ROOT workspace can only contain DEPARTMENT workspaces"

    dept = create_sub_workspace(db, root, organizer, name="Tech", workspace_type=WorkspaceType.DEPARTMENT)
    committee = create_sub_workspace(db, dept, organizer, name="Infra", workspace_type=WorkspaceType.COMMITTEE)
    team = create_sub_workspace(db, committee, organizer, name="Network", workspace_type=WorkspaceType.TEAM)
    with pytest.raises(HTTPException) as exc:
        validate_child_type(team, WorkspaceType.TEAM)
    assert exc.value.detail == "TEAM workspaces cannot have sub-workspaces"

    lead = (
        db.query(WorkspaceTeamMember)
        .filter(WorkspaceTeamMember.workspace_id == dept.id)
        .one()
    )
    assert lead.role == WorkspaceRole.TEAM_LEAD

    tree = build_tree(db, root)
    assert tree["children"][0]["name"] == "Tech"
    assert tree["children"][0]["children"][0]["children"][0]["name"] == "Network"


def test_invite_member_conflicts_and_owner_protection(db, event, organizer, participant):
    root = provision_root(db, event, organizer)
    member = invite_member(db, root, participant.email, WorkspaceRole.GENERAL_VOLUNTEER, organizer)
    assert member.status == MemberStatus.INVITED

    with pytest.raises(HTTPException) as exc:
        invite_member(db, root, participant.email, WorkspaceRole.TEAM_LEAD, organizer)
    assert exc.value.status_code == 409

    with pytest.raises(HTTPException) as exc:
        invite_member(db, root, "nobody@example.com", WorkspaceRole.TEAM_LEAD, organizer)
    assert exc.value.status_code == 404

    owner = db.query(WorkspaceTeamMember).filter(WorkspaceTeamMember.user_id == organizer.id).one()
    with pytest.raises(HTTPException) as exc:
        deactivate_member(db, owner)
    assert exc.value.detail == "Workspace must keep at least one owner"


def test_wind_down_only_from_active(db, event, organizer):
    root = provision_root(db, event, organizer)
    initiate_wind_down(db, root)
    assert root.status == WorkspaceStatus.WINDING_DOWN
    with pytest.raises(HTTPException):
        initiate_wind_down(db, root)


def test_event_has_concluded():
    event = SimpleNamespace(status=EventStatus.PUBLISHED, end_date=NOW + timedelta(days=1))
    assert event_has_concluded(event, NOW) is False
    event.end_date = NOW - timedelta(minutes=1)
    assert event_has_concluded(event, NOW) is True
    event.end_date = None
    event.status = EventStatus.CANCELLED
    assert event_has_concluded(event, NOW) is True


def test_dissolve_requires_finished_event(db, event, organizer):
    root = provision_root(db, event, organizer)
    with pytest.raises(HTTPException) as exc:
        dissolve(db, root, event, NOW)
    assert exc.value.status_code == 400


def test_dissolve_with_retention_then_immediately(db, event, organizer, participant):
    root = provision_root(db, event, organizer)
    invite_member(db, root, participant.email, WorkspaceRole.GENERAL_VOLUNTEER, organizer)
    event.status = EventStatus.COMPLETED
    db.commit()

    dissolve(db, root, event, NOW)
    assert root.status == WorkspaceStatus.WINDING_DOWN
    assert root.settings["retention_period_days"] == 30

    dissolve(db, root, event, NOW, retention_days=0)
    assert root.status == WorkspaceStatus.DISSOLVED
    statuses = {m.status for m in db.query(WorkspaceTeamMember).all()}
    assert statuses == {MemberStatus.INACTIVE}


def test_workspace_api_flow(client, db, event, organizer, participant):
    org_headers = auth_headers(organizer)
    provisioned = client.post(f"/api/events/{event.id}/workspaces/provision", headers=org_headers)
    assert provisioned.status_code == 201
    root_id = provisioned.json()["id"]
    assert provisioned.json()["status"] == "ACTIVE"

    again = client.post(f"/api/events/{event.id}/workspaces/provision", headers=org_headers)
    assert again.status_code == 409

    wrong = client.post(
        f"/api/workspaces/{root_id}/children",
        json={"name": "Ops Team", "workspace_type": "TEAM"},
        headers=org_headers,
    )
    assert wrong.status_code == 400

    dept = client.post(
        f"/api/workspaces/{root_id}/children",
        json={"name": "Operations", "workspace_type": "DEPARTMENT"},
        headers=org_headers,
    )
    assert dept.status_code == 201

    assert client.get(f"/api/workspaces/{root_id}", headers=auth_headers(participant)).status_code == 403

    invited = client.post(
        f"/api/workspaces/{root_id}/members",
        json={"email": participant.email, "role": "VOLUNTEER_MANAGER"},
        headers=org_headers,
    )
    assert invited.status_code == 201
    assert invited.json()["status"] == "INVITED"

    accepted = client.post(f"/api/workspaces/{root_id}/accept", headers=auth_headers(participant))
    assert accepted.json()["status"] == "ACTIVE"

    tree = client.get(f"/api/workspaces/{root_id}/tree", headers=auth_headers(participant)).json()
    assert [child["name"] for child in tree["children"]] == ["Operations"]

    members = client.get(f"/api/workspaces/{root_id}/members", headers=org_headers).json()
    assert len(members) == 2

    volunteer_invite = client.post(
        f"/api/workspaces/{root_id}/members",
        json={"email": make_user(db, "x@example.com").email},
        headers=auth_headers(participant),
    )
    assert volunteer_invite.status_code == 403

    event.status = EventStatus.COMPLETED
    db.commit()
    dissolved = client.post(f"/api/workspaces/{root_id}/dissolve", json={"retention_period_days": 0}, headers=org_headers)
    assert dissolved.status_code == 200
    assert dissolved.json()["status"] == "DISSOLVED"
