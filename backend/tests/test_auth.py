from fastapi.testclient import TestClient
from sqlmodel import Session, select

import lms_api.db as db
from lms_api.models import User
from lms_api.seed import ensure_default_admin, DEFAULT_ADMIN_EMAIL


FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def test_signup_and_login_flow(client: TestClient):
    email = "user1@test.com"
    r = client.post("/auth/signup", json={
        "email": email,
        "full_name": "User One",
        "password": "pass12345",
    })
    assert r.status_code == 200, r.text
    token = r.json()["access_token"]
    assert token
    assert r.json()["must_change_password"] is False

    r2 = client.post("/auth/token", data={"username": email, "password": "pass12345"}, headers=FORM_HEADERS)
    assert r2.status_code == 200
    assert r2.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {r2.json()['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == email
    assert me.json()["role"] == "student"


def test_signup_ignores_requested_role_and_rejects_duplicates(client: TestClient):
    payload = {"email": "dup@test.com", "full_name": "Dup", "password": "pass12345", "role": "admin"}
    first = client.post("/auth/signup", json=payload)
    assert first.status_code == 200

    with Session(db.engine) as session:
        user = session.exec(select(User).where(User.email == "dup@test.com")).one()
        assert user.role == "student"

    second = client.post("/auth/signup", json=payload)
    assert second.status_code == 400
    assert second.json()["detail"] == "User already exists"


def test_signup_requires_long_password(client: TestClient):
    r = client.post("/auth/signup", json={"email": "short@test.com", "full_name": "Short", "password": "abc"})
    assert r.status_code == 422


def test_login_rejects_bad_credentials(client: TestClient, make_user):
    user = make_user("student")
    r = client.post("/auth/token", data={"username": user.email, "password": "wrong-pass"}, headers=FORM_HEADERS)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid credentials"


def test_change_password_endpoint_enforces_current_secret(client: TestClient, make_user):
    user = make_user("mentor", password="Original123")

    bad = client.post(
        "/auth/change-password",
        json={"current_password": "badpass", "new_password": "NewPassword123"},
        headers=user.headers,
    )
    assert bad.status_code == 400

    same = client.post(
        "/auth/change-password",
        json={"current_password": "Original123", "new_password": "Original123"},
        headers=user.headers,
    )
    assert same.status_code == 400

    ok = client.post(
        "/auth/change-password",
        json={"current_password": "Original123", "new_password": "NewPassword123"},
        headers=user.headers,
    )
    assert ok.status_code == 200
    assert ok.json()["must_change_password"] is False

    relog = client.post(
        "/auth/token",
        data={"username": user.email, "password": "NewPassword123"},
        headers=FORM_HEADERS,
    )
    assert relog.status_code == 200


def test_force_password_reset_flag_sets_on_admin_creation(client: TestClient):
    ensure_default_admin(force_password_reset=True)
    with Session(db.engine) as session:
        admin = session.exec(select(User).where(User.email == DEFAULT_ADMIN_EMAIL)).first()
        assert admin is not None
        assert admin.role == "admin"
        assert admin.must_change_password is True


def test_protected_routes_require_token_and_role(client: TestClient, make_user):
    anonymous = client.get("/courses/")
    assert anonymous.status_code == 401

    garbage = client.get("/courses/", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
    assert garbage.json()["detail"] == "Not authenticated"

    student = make_user("student")
    forbidden = client.post("/courses/", json={"code": "NOPE", "name": "Nope"}, headers=student.headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Insufficient permissions"


def test_token_is_rejected_after_role_change(client: TestClient, make_user):
    mentor = make_user("mentor")
    assert client.get("/courses/", headers=mentor.headers).status_code == 200

    with Session(db.engine) as session:
        user = session.exec(select(User).where(User.email == mentor.email)).one()
        user.role = "student"
        session.add(user)
        session.commit()

    stale = client.get("/courses/", headers=mentor.headers)
    assert stale.status_code == 401
