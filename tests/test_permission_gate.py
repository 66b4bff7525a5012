from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from storefront.api.deps import check_any_permission, check_permission, get_permission_service
from storefront.domain.models import AuditLog, EmployeeCreate, Identity, RegisterRequest, UserPermission
from storefront.domain.permissions import Role
from storefront.infra.config import AuthSettings
from storefront.infra.db import build_engine, create_schema
from storefront.main import create_app
from storefront.services.identity_service import IdentityService
from storefront.services.permission_service import PermissionService

DENIED_BODY = {
    "success": False,
    "message": "Access denied. You do not have permission to access this resource.",
}
HTML_ACCEPT = {"Accept": "text/html,application/xhtml+xml"}


@pytest.fixture()
def app(tmp_path: Path) -> FastAPI:
    test_engine = build_engine(f"sqlite:///{tmp_path / 'gate_test.db'}")
    create_schema(test_engine)
    settings = AuthSettings(jwt_secret="gate-secret-0123456789-abcdefghijklmno", bcrypt_rounds=4)
    app = create_app(settings, engine=test_engine)

    @app.get("/gated/empty-any", dependencies=[Depends(check_any_permission([]))])
    def empty_any_route() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/gated/injection", dependencies=[Depends(check_permission("products.canAccess' OR '1'='1"))])
    def injection_route() -> dict[str, bool]:
        return {"ok": True}

    @app.get(
        "/gated/any-injection",
        dependencies=[Depends(check_any_permission(["x') OR 1=1 --", "products.canAccess"]))],
    )
    def any_injection_route() -> dict[str, bool]:
        return {"ok": True}

    return app


@pytest.fixture()
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    client = TestClient(app)
    yield client
    client.close()


def _employee(app: FastAPI, email: str, role: Role = Role.EMPLOYEE) -> Identity:
    service = IdentityService(app.state.engine, bcrypt_rounds=4)
    user = service.create_employee(
        EmployeeCreate(email=email, password="employee-pass-1", full_name="Staff", role=role)
    )
    return Identity.from_user(user)


def _grant(app: FastAPI, identity: Identity, name: str, can_access: bool = True) -> None:
    PermissionService(app.state.engine).set_permission(identity.id, name, can_access)


def _auth_header(app: FastAPI, identity: Identity) -> dict[str, str]:
    return {"Authorization": f"Bearer {app.state.codec.generate_access_token(identity)}"}


def test_no_row_denies(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, clerk))
    assert response.status_code == 403
    assert response.json() == DENIED_BODY


def test_row_with_false_denies(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "users.canRead", can_access=False)
    response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, clerk))
    assert response.status_code == 403


def test_granted_row_allows(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "users.canRead")
    response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, clerk))
    assert response.status_code == 200
    assert response.json()["permissions"] == {"users": {"canRead": True}}


def test_admin_bypasses_matrix(app: FastAPI, client: TestClient) -> None:
    admin = _employee(app, "admin@designxcel.test", Role.ADMIN)
    clerk = _employee(app, "clerk@designxcel.test")
    response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, admin))
    assert response.status_code == 200
    assert response.json() == {"success": True, "userId": clerk.id, "permissions": {}}


def test_admin_bypass_does_not_touch_database(app: FastAPI, client: TestClient, monkeypatch) -> None:
    admin = _employee(app, "admin@designxcel.test", Role.ADMIN)

    def _boom(*_args: object, **_kwargs: object) -> bool:
        raise AssertionError("admin checks must not query the matrix")

    monkeypatch.setattr(PermissionService, "has_permission", _boom)
    response = client.get(f"/api/admin/users/{admin.id}/permissions", headers=_auth_header(app, admin))
    assert response.status_code == 200


def test_unauthenticated_request_is_401(client: TestClient) -> None:
    response = client.get("/api/admin/users/1/permissions")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authentication required"}


def test_html_denial_redirects_to_forbidden_page(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    response = client.get(
        f"/api/admin/users/{clerk.id}/permissions",
        headers={**_auth_header(app, clerk), **HTML_ACCEPT},
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/Employee/Forbidden"


def test_lookup_failure_fails_closed(app: FastAPI, client: TestClient, monkeypatch) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "users.canRead")

    def _broken(*_args: object, **_kwargs: object) -> bool:
        raise RuntimeError("connection reset")

    monkeypatch.setattr(PermissionService, "has_permission", _broken)

    response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, clerk))
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Error checking permissions"}

    html = client.get(
        f"/api/admin/users/{clerk.id}/permissions",
        headers={**_auth_header(app, clerk), **HTML_ACCEPT},
        follow_redirects=False,
    )
    assert html.status_code == 302
    assert html.headers["location"] == "/Employee/Forbidden"


def test_missing_database_fails_closed(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    app.dependency_overrides[get_permission_service] = lambda: None
    try:
        response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, clerk))
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Database connection not available"}


def test_any_permission_grants_on_single_match(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "customers.canRead")
    response = client.get("/api/admin/users", headers=_auth_header(app, clerk))
    assert response.status_code == 200
    assert [item["email"] for item in response.json()] == ["clerk@designxcel.test"]


def test_any_permission_denies_without_match(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "customers.canRead", can_access=False)
    _grant(app, clerk, "products.canRead")
    response = client.get("/api/admin/users", headers=_auth_header(app, clerk))
    assert response.status_code == 403
    assert response.json() == DENIED_BODY


def test_any_permission_lookup_failure_fails_closed(app: FastAPI, client: TestClient, monkeypatch) -> None:
    clerk = _employee(app, "clerk@designxcel.test")

    def _broken(*_args: object, **_kwargs: object) -> int:
        raise RuntimeError("timeout")

    monkeypatch.setattr(PermissionService, "count_granted", _broken)
    response = client.get("/api/admin/users", headers=_auth_header(app, clerk))
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Error checking permissions"}


def test_empty_permission_list_denies(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "products.canAccess")
    response = client.get("/gated/empty-any", headers=_auth_header(app, clerk))
    assert response.status_code == 403


def test_permission_names_are_bound_parameters(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "orders.canAccess")

    single = client.get("/gated/injection", headers=_auth_header(app, clerk))
    assert single.status_code == 403

    many = client.get("/gated/any-injection", headers=_auth_header(app, clerk))
    assert many.status_code == 403


def test_session_cookie_feeds_the_gate(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    _grant(app, clerk, "users.canRead")
    token = app.state.codec.generate_access_token(clerk)
    client.cookies.set(app.state.settings.session_cookie_name, token)
    response = client.get(f"/api/admin/users/{clerk.id}/permissions")
    assert response.status_code == 200


def test_denials_are_audited(app: FastAPI, client: TestClient) -> None:
    clerk = _employee(app, "clerk@designxcel.test")
    response = client.get(f"/api/admin/users/{clerk.id}/permissions", headers=_auth_header(app, clerk))
    assert response.status_code == 403

    with Session(app.state.engine) as session:
        rows = list(session.exec(select(AuditLog).where(AuditLog.action == "permission.denied")).all())
    assert len(rows) == 1
    assert rows[0].actor_id == clerk.id
    assert rows[0].outcome == "denied"
    assert rows[0].detail["required"] == ["users.canRead"]


def test_customer_never_passes_the_gate(app: FastAPI, client: TestClient) -> None:
    user = IdentityService(app.state.engine, bcrypt_rounds=4).register_customer(
        RegisterRequest(email="shopper@designxcel.test", password="shopper-pass-1", full_name="Shopper")
    )
    customer = Identity.from_user(user)
    with Session(app.state.engine) as session:
        session.add(UserPermission(user_id=customer.id, permission_name="users.canRead", can_access=True))
        session.commit()
    url = f"/api/admin/users/{customer.id}/permissions"

    response = client.get(url, headers=_auth_header(app, customer))
    assert response.status_code == 403
    assert response.json() == DENIED_BODY

    html = client.get(url, headers={**_auth_header(app, customer), **HTML_ACCEPT}, follow_redirects=False)
    assert html.status_code == 302
    assert html.headers["location"] == "/Employee/Forbidden"

    with Session(app.state.engine) as session:
        rows = list(session.exec(select(AuditLog).where(AuditLog.action == "permission.denied")).all())
    assert [row.outcome for row in rows] == ["denied", "denied"]
