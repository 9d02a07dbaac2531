import pytest
from fastapi import HTTPException

from app.core.auth import Identity
from app.models.entities import FamilyGroup, FamilyMember, RoleEnum
from app.services.access import check, is_allowed, require_family
from app.services.roles import Capability
from conftest import ALICE, BOB


def _seed_family(db_session):
    family = FamilyGroup(name="Smiths", created_by="u-admin")
    db_session.add(family)
    db_session.flush()
    db_session.add_all(
        [
            FamilyMember(family_id=family.id, user_id="u-admin", email="admin@example.com", role=RoleEnum.admin),
            FamilyMember(family_id=family.id, user_id="u-viewer", email="viewer@example.com", role=RoleEnum.viewer),
        ]
    )
    db_session.commit()
    return family


def test_check_returns_membership_when_role_grants_capability(db_session):
    family = _seed_family(db_session)

    member = check(db_session, Identity("u-admin", "admin@example.com"), family.id, Capability.manage_members)
    assert member.role == RoleEnum.admin


def test_check_rejects_viewer_for_list_management(db_session):
    family = _seed_family(db_session)

    with pytest.raises(HTTPException) as exc_info:
        check(db_session, Identity("u-viewer", "viewer@example.com"), family.id, Capability.manage_lists)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "manageLists permission required"


def test_check_rejects_non_member(db_session):
    family = _seed_family(db_session)

    with pytest.raises(HTTPException) as exc_info:
        check(db_session, Identity("u-stranger", "stranger@example.com"), family.id, Capability.view_lists)
    assert exc_info.value.status_code == 403


def test_is_allowed_never_raises(db_session):
    family = _seed_family(db_session)

    assert is_allowed(db_session, Identity("u-viewer", "viewer@example.com"), family.id, Capability.view_lists)
    assert not is_allowed(db_session, Identity("u-viewer", "viewer@example.com"), family.id, Capability.invite)
    assert not is_allowed(db_session, Identity("u-stranger", "s@example.com"), family.id, Capability.view_lists)


def test_require_family_missing_is_not_found(db_session):
    with pytest.raises(HTTPException) as exc_info:
        require_family(db_session, 999)
    assert exc_info.value.status_code == 404


def test_missing_identity_headers_are_unauthorized(client):
    resp = client.get("/v1/families")
    assert resp.status_code == 401


def test_me_lists_memberships_and_pending_invitations(client, family_id):
    client.post(f"/v1/families/{family_id}/invitations", json={"email": "bob@example.com"}, headers=ALICE)

    me = client.get("/v1/me", headers=ALICE).json()
    assert me["user_id"] == "u-alice"
    assert me["memberships"] == [
        {"family_id": family_id, "family_name": "Household", "member_id": 1, "role": "admin"}
    ]
    assert me["pending_invitations"] == 0

    bob = client.get("/v1/me", headers=BOB).json()
    assert bob["memberships"] == []
    assert bob["pending_invitations"] == 1
