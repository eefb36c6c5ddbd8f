from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from app import main as app_main
from app.domain.models import UserTenant
from app.domain.permissions import CallerContext, authorize
from app.infra import db
from app.services.identity_service import IdentityService


@pytest.fixture()
def console_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "user_tenant_test.db"
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
    return response.json()["accessToken"]


def _create_user(
    client: TestClient,
    token: str,
    tenant_id: str,
    username: str,
    role_ids: list[str],
) -> dict[str, object]:
    response = client.post(
        "/api/system/user/add",
        json={
            "tenantId": tenant_id,
            "username": username,
            "password": f"{username}-pass",
            "fullname": username.title(),
            "roleIds": role_ids,
        },
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()


def test_grants_do_not_leak_across_tenants(console_client: TestClient) -> None:
    tenant_1 = _register(console_client, "t1")
    tenant_2 = _register(console_client, "t2")
    token_1 = _login(console_client, tenant_1)

    permission = console_client.post(
        "/api/system/permission/add",
        json={"tenantId": tenant_1, "code": "a.b", "name": "A B"},
        headers=_auth_header(token_1),
    ).json()
    role = console_client.post(
        "/api/system/role/add",
        json={"tenantId": tenant_1, "code": "R", "name": "R", "permissionIds": [permission["id"]]},
        headers=_auth_header(token_1),
    ).json()
    user = _create_user(console_client, token_1, tenant_1, "ursula", [role["id"]])
    assert user["roleIds"] == [role["id"]]

    service = IdentityService()
    caller = service.resolve_caller(str(user["id"]))
    assert caller.tenant_id == tenant_1
    assert authorize(caller, [], ["a.b"]) is True

    with Session(db.get_engine()) as session:
        session.add(UserTenant(user_id=str(user["id"]), tenant_id=tenant_2))
        session.commit()

    role_codes, permission_codes = service.collect_effective_permissions(tenant_2, str(user["id"]))
    assert role_codes == set()
    assert permission_codes == set()
    in_t2 = CallerContext(
        user_id=str(user["id"]),
        tenant_id=tenant_2,
        role_codes=frozenset(role_codes),
        permission_codes=frozenset(permission_codes),
    )
    assert authorize(in_t2, [], ["a.b"]) is False


def test_user_crud_with_role_reconciliation(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)

    roles = console_client.get("/api/system/user/ref-roles", headers=_auth_header(token)).json()
    assert [item["code"] for item in roles] == ["USER"]
    user_role_id = roles[0]["id"]

    user = _create_user(console_client, token, tenant_id, "carol", [user_role_id, "stale-role"])
    assert user["roleIds"] == [user_role_id]
    assert user["tenantId"] == tenant_id
    assert [item["code"] for item in user["roles"]] == ["USER"]

    taken = console_client.post(
        "/api/system/user/validate-username",
        json={"tenantId": tenant_id, "username": "carol"},
        headers=_auth_header(token),
    )
    assert taken.status_code == 400
    assert taken.json() == {"success": False, "message": "Username already exists.", "field": "username"}
    own = console_client.post(
        "/api/system/user/validate-username",
        json={"id": user["id"], "tenantId": tenant_id, "username": "carol"},
        headers=_auth_header(token),
    )
    assert own.status_code == 200

    tree = console_client.get(
        "/api/system/user/role-tree",
        params={"userId": user["id"]},
        headers=_auth_header(token),
    ).json()
    assert tree["tree"][0]["name"] == "Roles"
    assert tree["checkedIds"] == [user_role_id]

    edited = console_client.put(
        f"/api/system/user/{user['id']}/edit",
        json={"id": user["id"], "tenantId": tenant_id, "email": "carol@example.com", "roleIds": []},
        headers=_auth_header(token),
    )
    assert edited.status_code == 200
    assert edited.json()["roleIds"] == []
    assert edited.json()["email"] == "carol@example.com"
    assert edited.json()["fullname"] == "Carol"

    listing = console_client.get("/api/system/user", headers=_auth_header(token)).json()
    assert [item["username"] for item in listing["items"]] == ["admin", "carol"]
    assert listing["count"] == 2

    deleted = console_client.delete(f"/api/system/user/{user['id']}/delete", headers=_auth_header(token))
    assert deleted.status_code == 200
    missing = console_client.get(f"/api/system/user/{user['id']}", headers=_auth_header(token))
    assert missing.status_code == 404


def test_admin_role_survives_user_edit(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    profile = console_client.get("/api/auth/user", headers=_auth_header(token)).json()

    edited = console_client.put(
        f"/api/system/user/{profile['id']}/edit",
        json={"id": profile["id"], "tenantId": tenant_id, "roleIds": []},
        headers=_auth_header(token),
    )
    assert edited.status_code == 200
    assert console_client.get("/api/auth/user", headers=_auth_header(token)).json()["roles"] == ["SYSADMIN"]

    self_delete = console_client.delete(f"/api/system/user/{profile['id']}/delete", headers=_auth_header(token))
    assert self_delete.status_code == 409


def test_tenant_add_switch_and_delete(console_client: TestClient) -> None:
    home = _register(console_client, "home")
    token = _login(console_client, home)

    created = console_client.post(
        "/api/system/tenant/add",
        json={"code": "branch", "name": "Branch Office"},
        headers=_auth_header(token),
    )
    assert created.status_code == 201
    branch = created.json()["id"]

    tenants = console_client.get("/api/system/user/user-tenants", headers=_auth_header(token)).json()
    assert [item["code"] for item in tenants] == ["branch", "home"]

    switched = console_client.post(
        "/api/system/user/switch-tenant",
        json={"tenantId": branch},
        headers=_auth_header(token),
    )
    assert switched.status_code == 200
    branch_token = switched.json()["accessToken"]
    profile = console_client.get("/api/auth/user", headers=_auth_header(branch_token)).json()
    assert profile["activeTenant"]["code"] == "branch"
    assert profile["roles"] == ["SYSADMIN"]

    cannot_delete_active = console_client.delete(
        f"/api/system/tenant/{branch}/delete",
        headers=_auth_header(branch_token),
    )
    assert cannot_delete_active.status_code == 409

    back = console_client.post(
        "/api/system/user/switch-tenant",
        json={"tenantId": home},
        headers=_auth_header(branch_token),
    )
    home_token = back.json()["accessToken"]
    deleted = console_client.delete(f"/api/system/tenant/{branch}/delete", headers=_auth_header(home_token))
    assert deleted.status_code == 200

    tenants = console_client.get("/api/system/user/user-tenants", headers=_auth_header(home_token)).json()
    assert [item["code"] for item in tenants] == ["home"]


def test_switch_to_foreign_tenant_is_forbidden(console_client: TestClient) -> None:
    tenant_1 = _register(console_client, "t1")
    tenant_2 = _register(console_client, "t2")
    token_1 = _login(console_client, tenant_1)

    response = console_client.post(
        "/api/system/user/switch-tenant",
        json={"tenantId": tenant_2},
        headers=_auth_header(token_1),
    )
    assert response.status_code == 403

    foreign_user = console_client.get(f"/api/system/tenant/{tenant_2}", headers=_auth_header(token_1))
    assert foreign_user.status_code == 404


def test_tenant_add_requires_sysadmin_role(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    admin_token = _login(console_client, tenant_id)
    catalog = console_client.get("/api/system/role/ref-permissions", headers=_auth_header(admin_token)).json()
    everything = console_client.post(
        "/api/system/role/add",
        json={
            "tenantId": tenant_id,
            "code": "POWER",
            "name": "Power",
            "permissionIds": [item["id"] for item in catalog],
        },
        headers=_auth_header(admin_token),
    ).json()
    _create_user(console_client, admin_token, tenant_id, "dave", [everything["id"]])
    dave_token = _login(console_client, tenant_id, "dave", "dave-pass")

    listing = console_client.get("/api/system/tenant", headers=_auth_header(dave_token))
    assert listing.status_code == 200

    response = console_client.post(
        "/api/system/tenant/add",
        json={"code": "new", "name": "New"},
        headers=_auth_header(dave_token),
    )
    assert response.status_code == 403


def test_inactive_user_cannot_log_in(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    user = _create_user(console_client, token, tenant_id, "erin", [])
    user_token = _login(console_client, tenant_id, "erin", "erin-pass")

    console_client.put(
        f"/api/system/user/{user['id']}/edit",
        json={"id": user["id"], "tenantId": tenant_id, "isActive": False, "roleIds": []},
        headers=_auth_header(token),
    )

    login = console_client.post(
        "/api/auth/login",
        json={"tenantId": tenant_id, "username": "erin", "password": "erin-pass"},
    )
    assert login.status_code == 401
    assert console_client.get("/api/auth/user", headers=_auth_header(user_token)).status_code == 401


def test_admin_resets_member_password(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    other_tenant = _register(console_client, "globex")
    token = _login(console_client, tenant_id)
    user = _create_user(console_client, token, tenant_id, "frank", [])
    reset_url = f"/api/system/user/{user['id']}/reset-password"

    mismatch = console_client.post(
        reset_url,
        json={"id": user["id"], "tenantId": tenant_id, "password": "fresh-pass", "confirmPassword": "other-pass"},
        headers=_auth_header(token),
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["field"] == "confirmPassword"

    response = console_client.post(
        reset_url,
        json={"id": user["id"], "tenantId": tenant_id, "password": "fresh-pass", "confirmPassword": "fresh-pass"},
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    assert response.json()["username"] == "frank"

    stale = console_client.post(
        "/api/auth/login",
        json={"tenantId": tenant_id, "username": "frank", "password": "frank-pass"},
    )
    assert stale.status_code == 401
    frank_token = _login(console_client, tenant_id, "frank", "fresh-pass")

    denied = console_client.post(
        reset_url,
        json={"id": user["id"], "tenantId": tenant_id, "password": "mine-pass", "confirmPassword": "mine-pass"},
        headers=_auth_header(frank_token),
    )
    assert denied.status_code == 403

    other_token = _login(console_client, other_tenant)
    visitor = _create_user(console_client, other_token, other_tenant, "gina", [])
    with Session(db.get_engine()) as session:
        session.add(UserTenant(user_id=str(visitor["id"]), tenant_id=tenant_id))
        session.commit()
    foreign = console_client.post(
        f"/api/system/user/{visitor['id']}/reset-password",
        json={"id": visitor["id"], "tenantId": tenant_id, "password": "taken-pass", "confirmPassword": "taken-pass"},
        headers=_auth_header(token),
    )
    assert foreign.status_code == 403


def test_refresh_token_issues_access_token(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    _create_user(console_client, token, tenant_id, "hank", [])
    login = console_client.post(
        "/api/auth/login",
        json={"tenantId": tenant_id, "username": "hank", "password": "hank-pass"},
    )
    assert login.status_code == 200
    tokens = login.json()
    assert tokens["refreshToken"]

    refreshed = console_client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
    assert refreshed.status_code == 200
    access = refreshed.json()["accessToken"]
    profile = console_client.get("/api/auth/user", headers=_auth_header(access))
    assert profile.status_code == 200
    assert profile.json()["username"] == "hank"

    wrong_kind = console_client.post("/api/auth/refresh", json={"refreshToken": tokens["accessToken"]})
    assert wrong_kind.status_code == 401
    assert wrong_kind.json() == {"success": False, "message": "Invalid token."}
    assert console_client.get("/api/auth/user", headers=_auth_header(tokens["refreshToken"])).status_code == 401
    assert console_client.post("/api/auth/refresh", json={"refreshToken": "garbage"}).status_code == 401


def test_refresh_is_refused_for_disabled_user(console_client: TestClient) -> None:
    tenant_id = _register(console_client, "acme")
    token = _login(console_client, tenant_id)
    user = _create_user(console_client, token, tenant_id, "ivy", [])
    login = console_client.post(
        "/api/auth/login",
        json={"tenantId": tenant_id, "username": "ivy", "password": "ivy-pass"},
    )
    refresh_token = login.json()["refreshToken"]

    console_client.put(
        f"/api/system/user/{user['id']}/edit",
        json={"id": user["id"], "tenantId": tenant_id, "isActive": False, "roleIds": []},
        headers=_auth_header(token),
    )

    assert console_client.post("/api/auth/refresh", json={"refreshToken": refresh_token}).status_code == 401


def test_public_registration_checks(console_client: TestClient) -> None:
    _register(console_client, "acme")

    free_code = console_client.post("/api/auth/validate-tenantcode", json={"code": "globex"})
    assert free_code.status_code == 200
    assert free_code.json() == {"message": "Tenant code is valid."}

    taken_code = console_client.post("/api/auth/validate-tenantcode", json={"code": "acme"})
    assert taken_code.status_code == 400
    assert taken_code.json()["field"] == "code"

    taken_user = console_client.post("/api/auth/validate-username", json={"code": "acme", "username": "admin"})
    assert taken_user.status_code == 400
    assert taken_user.json()["field"] == "username"

    fresh = console_client.post("/api/auth/validate-username", json={"code": "globex", "username": "admin"})
    assert fresh.status_code == 200
    assert fresh.json() == {"message": "Username is valid."}

    at_sign = console_client.post("/api/auth/validate-username", json={"code": "globex", "username": "a@b"})
    assert at_sign.status_code == 400
