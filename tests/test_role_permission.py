from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import Role, RolePermission
from app.domain.permissions import DEFAULT_PERMISSIONS, ROLE_SYSADMIN
from app.infra import db


@pytest.fixture()
def console_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "role_permission_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, code: str, username: str = "admin", password: str = "admin-pass") -> str:
    response = client.post(
        "/api/auth/register-tenant",
        json={"code": code, "name": f"Tenant {code}", "username": username, "password": password},
    )
    assert response.status_code == 201
    return response.json()["tenant"]["id"]


def _login(client: TestClient, tenant_id: str, username: str = "admin", password: str = "admin-pass") -> str:
    response = client.post(
        "/api/auth/login",
        json={"tenantId": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "bearer"
    return body["accessToken"]


def _ref_permissions(client: TestClient, token: str) -> dict[str, str]:
    response = client.get("/api/system/role/ref-permissions", headers=_auth_header(token))
    assert response.status_code == 200
    return {item["code"]: item["id"] for item in response.json()}


def _create_role(
    client: TestClient,
    token: str,
    tenant_id: str,
    code: str,
    permission_ids: list[str],
) -> dict[str, object]:
    response = client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_id, "code": code, "name": code.title(), "permissionIds": permission_ids},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()


def test_registered_admin_holds_sysadmin_and_default_catalog(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)

    profile = console_client.get("/api/auth/user", headers=_auth_header(token))
    assert profile.status_code == 200
    body = profile.json()
    assert body["roles"] == [ROLE_SYSADMIN]
    assert body["permissions"] == sorted(code for code, _ in DEFAULT_PERMISSIONS)
    assert body["activeTenant"]["id"] == tenant_id

    catalog = _ref_permissions(console_client, token)
    assert list(catalog) == sorted(code for code, _ in DEFAULT_PERMISSIONS)


def test_duplicate_tenant_code_conflicts(console_client: TestClient) -> None:
    _register(console_client, "acme")
    response = console_client.post(
        "/api/auth/register-tenant",
        json={"code": "acme", "name": "Again", "username": "other", "password": "other-pass"},
    )
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "tenant code already exists"}


def test_role_add_drops_stale_and_foreign_permission_ids(console_client: TestClient) -> None:
    tenant_1 = _register(console_client, "t1")
    tenant_2 = _register(console_client, "t2")
    token_1 = _login(console_client, tenant_1)
    token_2 = _login(console_client, tenant_2)
    own = _ref_permissions(console_client, token_1)
    foreign = _ref_permissions(console_client, token_2)

    role = _create_role(
        console_client,
        token_1,
        tenant_1,
        "AUDITOR",
        [own["system.role.view"], foreign["system.role.edit"], "no-such-permission"],
    )

    assert role["permissionIds"] == [own["system.role.view"]]
    assert [item["code"] for item in role["permissions"]] == ["system.role.view"]
    assert role["isSystem"] is False

    with Session(db.get_engine()) as session:
        links = session.exec(select(RolePermission).where(RolePermission.role_id == role["id"])).all()
    assert [(link.tenant_id, link.permission_id) for link in links] == [(tenant_1, own["system.role.view"])]


def test_permission_tree_marks_role_grants(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    catalog = _ref_permissions(console_client, token)
    role = _create_role(console_client, token, tenant_id, "EDITOR", [catalog["system.role.edit"]])

    response = console_client.get(
        "/api/system/role/permission-tree",
        params={"roleId": role["id"]},
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["checkedIds"] == [catalog["system.role.edit"]]
    root = body["tree"][0]
    assert root["id"] == "#root"
    system = root["children"][0]
    assert system["id"] == "system"
    role_folder = next(node for node in system["children"] if node["id"] == "system.role")
    assert role_folder["kind"] == "folder"
    checked = {node["id"]: node["checked"] for node in role_folder["children"]}
    assert checked[catalog["system.role.edit"]] is True
    assert checked[catalog["system.role.view"]] is False


def test_validate_role_code(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    role = _create_role(console_client, token, tenant_id, "AUDITOR", [])

    taken = console_client.post(
        "/api/system/role/validate-code",
        json={"tenantId": tenant_id, "code": "AUDITOR"},
        headers=_auth_header(token),
    )
    assert taken.status_code == 400
    assert taken.json() == {"success": False, "message": "Role code already exists.", "field": "code"}

    own = console_client.post(
        "/api/system/role/validate-code",
        json={"id": role["id"], "tenantId": tenant_id, "code": "AUDITOR"},
        headers=_auth_header(token),
    )
    assert own.status_code == 200
    assert own.json() == {"message": "Role code is valid."}

    reserved = console_client.post(
        "/api/system/role/validate-code",
        json={"tenantId": tenant_id, "code": "sysadmin"},
        headers=_auth_header(token),
    )
    assert reserved.status_code == 400
    assert reserved.json()["field"] == "code"

    create_reserved = console_client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_id, "code": "SysAdmin", "name": "Nope", "permissionIds": []},
        headers=_auth_header(token),
    )
    assert create_reserved.status_code == 400


def test_role_code_uniqueness_is_per_tenant(console_client: TestClient) -> None:
    tenant_1 = _register(console_client, "t1")
    tenant_2 = _register(console_client, "t2")
    token_1 = _login(console_client, tenant_1)
    token_2 = _login(console_client, tenant_2)
    _create_role(console_client, token_1, tenant_1, "AUDITOR", [])

    response = console_client.post(
        "/api/system/role/validate-code",
        json={"tenantId": tenant_2, "code": "AUDITOR"},
        headers=_auth_header(token_2),
    )
    assert response.status_code == 200


def test_system_role_is_hidden_and_read_only(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)

    listing = console_client.get("/api/system/role", headers=_auth_header(token))
    assert listing.status_code == 200
    codes = [item["code"] for item in listing.json()["items"]]
    assert ROLE_SYSADMIN not in codes
    assert codes == ["USER"]

    with Session(db.get_engine()) as session:
        sysadmin = session.exec(
            select(Role).where(Role.tenant_id == tenant_id).where(Role.code == ROLE_SYSADMIN)
        ).one()

    edit = console_client.put(
        f"/api/system/role/{sysadmin.id}/edit",
        json={"id": sysadmin.id, "tenantId": tenant_id, "code": "ROOT", "name": "Root", "permissionIds": []},
        headers=_auth_header(token),
    )
    assert edit.status_code == 409
    delete = console_client.delete(f"/api/system/role/{sysadmin.id}/delete", headers=_auth_header(token))
    assert delete.status_code == 409


def test_role_list_paginates_and_filters(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    for code in ("ALPHA", "BETA", "GAMMA"):
        _create_role(console_client, token, tenant_id, code, [])

    page = console_client.get(
        "/api/system/role",
        params={"page": 2, "perPage": 2, "sort": "code", "order": "asc"},
        headers=_auth_header(token),
    )
    assert page.status_code == 200
    body = page.json()
    assert body["count"] == 4
    assert [item["code"] for item in body["items"]] == ["GAMMA", "USER"]
    assert (body["page"], body["perPage"], body["sort"], body["order"]) == (2, 2, "code", "asc")

    filtered = console_client.get("/api/system/role", params={"filter": "et"}, headers=_auth_header(token))
    assert [item["code"] for item in filtered.json()["items"]] == ["BETA"]


def test_denied_request_returns_forbidden_body_and_revocation_is_immediate(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    admin_token = _login(console_client, tenant_id)
    catalog = _ref_permissions(console_client, admin_token)
    viewer = _create_role(console_client, admin_token, tenant_id, "VIEWER", [catalog["system.role.view"]])

    create_user = console_client.post(
        "/api/system/user/add",
        json={"tenantId": tenant_id, "username": "bob", "password": "bob-pass", "roleIds": [viewer["id"]]},
        headers=_auth_header(admin_token),
    )
    assert create_user.status_code == 201
    bob_token = _login(console_client, tenant_id, "bob", "bob-pass")

    assert console_client.get("/api/system/role", headers=_auth_header(bob_token)).status_code == 200

    denied = console_client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_id, "code": "X", "name": "X", "permissionIds": []},
        headers=_auth_header(bob_token),
    )
    assert denied.status_code == 403
    assert denied.json() == {
        "success": False,
        "message": "You do not have permission to perform this action.",
    }

    revoke = console_client.put(
        f"/api/system/role/{viewer['id']}/edit",
        json={"id": viewer["id"], "tenantId": tenant_id, "code": "VIEWER", "name": "Viewer", "permissionIds": []},
        headers=_auth_header(admin_token),
    )
    assert revoke.status_code == 200
    assert revoke.json()["permissionIds"] == []

    # Same token, next request.
    assert console_client.get("/api/system/role", headers=_auth_header(bob_token)).status_code == 403


def test_add_only_caller_can_run_code_checks(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    admin_token = _login(console_client, tenant_id)
    catalog = _ref_permissions(console_client, admin_token)
    creator = _create_role(
        console_client,
        admin_token,
        tenant_id,
        "CREATOR",
        [catalog["system.role.view"], catalog["system.role.add"], catalog["system.user.add"]],
    )
    viewer = _create_role(console_client, admin_token, tenant_id, "VIEWER", [catalog["system.role.view"]])
    for username, role in (("bob", creator), ("carol", viewer)):
        response = console_client.post(
            "/api/system/user/add",
            json={"tenantId": tenant_id, "username": username, "password": "secret-pass", "roleIds": [role["id"]]},
            headers=_auth_header(admin_token),
        )
        assert response.status_code == 201
    bob_token = _login(console_client, tenant_id, "bob", "secret-pass")
    carol_token = _login(console_client, tenant_id, "carol", "secret-pass")

    role_check = console_client.post(
        "/api/system/role/validate-code",
        json={"tenantId": tenant_id, "code": "NEWROLE"},
        headers=_auth_header(bob_token),
    )
    assert role_check.status_code == 200
    assert role_check.json() == {"message": "Role code is valid."}

    user_check = console_client.post(
        "/api/system/user/validate-username",
        json={"tenantId": tenant_id, "username": "dave"},
        headers=_auth_header(bob_token),
    )
    assert user_check.status_code == 200

    created = console_client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_id, "code": "NEWROLE", "name": "New", "permissionIds": []},
        headers=_auth_header(bob_token),
    )
    assert created.status_code == 201

    denied = console_client.post(
        "/api/system/role/validate-code",
        json={"tenantId": tenant_id, "code": "OTHER"},
        headers=_auth_header(carol_token),
    )
    assert denied.status_code == 403


def test_body_tenant_must_match_active_tenant(console_client: TestClient) -> None:
    tenant_1 = _register(console_client, "t1")
    tenant_2 = _register(console_client, "t2")
    token_1 = _login(console_client, tenant_1)

    response = console_client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_2, "code": "SNEAKY", "name": "Sneaky", "permissionIds": []},
        headers=_auth_header(token_1),
    )
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_missing_or_invalid_token_is_unauthorized(console_client: TestClient) -> None:
    missing = console_client.get("/api/system/role")
    assert missing.status_code == 401
    assert missing.json()["success"] is False

    invalid = console_client.get("/api/system/role", headers=_auth_header("not-a-token"))
    assert invalid.status_code == 401


def test_invalid_body_is_bad_request_with_field_errors(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)

    response = console_client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_id, "code": "", "permissionIds": []},
        headers=_auth_header(token),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert set(body["errors"]) == {"code", "name"}


def test_permission_crud_updates_tree_and_cascades_grants(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)

    created = console_client.post(
        "/api/system/permission/add",
        json={"tenantId": tenant_id, "code": "report.salesSummary.view", "name": "View Sales Summary"},
        headers=_auth_header(token),
    )
    assert created.status_code == 201
    permission_id = created.json()["id"]

    duplicate = console_client.post(
        "/api/system/permission/validate-code",
        json={"tenantId": tenant_id, "code": "report.salesSummary.view"},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["field"] == "code"

    tree = console_client.get("/api/system/role/permission-tree", headers=_auth_header(token)).json()["tree"]
    report = next(node for node in tree[0]["children"] if node["id"] == "report")
    assert report["children"][0]["name"] == "Sales Summary"

    role = _create_role(console_client, token, tenant_id, "SALES", [permission_id])
    assert role["permissionIds"] == [permission_id]

    edited = console_client.put(
        f"/api/system/permission/{permission_id}/edit",
        json={
            "id": permission_id,
            "tenantId": tenant_id,
            "code": "report.salesSummary.read",
            "name": "Read Sales Summary",
        },
        headers=_auth_header(token),
    )
    assert edited.status_code == 200
    assert edited.json()["code"] == "report.salesSummary.read"

    deleted = console_client.delete(f"/api/system/permission/{permission_id}/delete", headers=_auth_header(token))
    assert deleted.status_code == 200
    detail = console_client.get(f"/api/system/role/{role['id']}", headers=_auth_header(token))
    assert detail.json()["permissionIds"] == []

    missing = console_client.get(f"/api/system/permission/{permission_id}", headers=_auth_header(token))
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "permission not found"}
