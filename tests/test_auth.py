import uuid
from datetime import datetime, timedelta, timezone

from dormhotel.auth import token_manager
from dormhotel.database import get_db
from dormhotel.models import Role, User

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, booking_payload, login_headers, register_and_login


def test_register_and_login(client):
    email = f"user_{uuid.uuid4().hex}@x.com"
    resp = client.post("/register", json={"email": email, "password": "secret"})
    assert resp.status_code == 201
    assert resp.json() == {"message": "Registration successful"}

    resp = client.post("/login", json={"email": email, "password": "secret"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["email"] == email
    assert data["role"] == "user"
    assert isinstance(data["id"], int)
    assert "password_hash" not in data


def test_login_sets_http_only_cookie(client):
    client.post("/register", json={"email": "a@x.com", "password": "pw12345"})
    resp = client.post("/login", json={"email": "a@x.com", "password": "pw12345"})
    cookie = resp.headers["set-cookie"]
    assert cookie.startswith("token=")
    assert "HttpOnly" in cookie
    assert "Max-Age=28800" in cookie
    assert "Path=/" in cookie
    assert "Domain" not in cookie


def test_register_duplicate_email(client):
    client.post("/register", json={"email": "a@x.com", "password": "pw12345"})
    resp = client.post("/register", json={"email": "a@x.com", "password": "different"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Email already exists"}


def test_register_missing_fields(client):
    resp = client.post("/register", json={"email": "a@x.com"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Email and password required"}


def test_register_malformed_body(client):
    resp = client.post("/register", content="not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_login_bad_credentials(client):
    client.post("/register", json={"email": "a@x.com", "password": "pw12345"})
    for body in (
        {"email": "a@x.com", "password": "wrong"},
        {"email": "nobody@x.com", "password": "pw12345"},
        {},
    ):
        resp = client.post("/login", json=body)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid credentials"}


def test_seeded_admin_can_login(client):
    resp = client.post("/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["role"] == "admin"


def test_cookie_session_and_logout(client):
    client.post("/register", json={"email": "a@x.com", "password": "pw12345"})
    client.post("/login", json={"email": "a@x.com", "password": "pw12345"})
    assert client.get("/bookings").status_code == 200

    resp = client.post("/logout")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logged out successfully"}
    assert client.get("/bookings").status_code == 401


def test_missing_token(client):
    resp = client.get("/bookings")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Authentication required"}


def test_invalid_token(client):
    resp = client.get("/bookings", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid token"}


def test_cookie_takes_precedence_over_header(client):
    alice = register_and_login(client, "alice@x.com")
    bob = register_and_login(client, "bob@x.com")
    client.post("/bookings", json=booking_payload(name="Alice"), headers=alice)

    client.cookies.set("token", alice["Authorization"].split(" ", 1)[1])
    resp = client.get("/bookings", headers=bob)
    client.cookies.clear()
    assert [b["name"] for b in resp.json()] == ["Alice"]


def test_role_checked_before_user_lookup(client):
    # token for a user id that does not exist but carries the wrong role
    token = token_manager.issue(9999, Role.USER)
    resp = client.get("/admin/users", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 403


def test_deleted_user_token_is_rejected(client):
    headers = register_and_login(client, "gone@x.com")
    db = next(client.app.dependency_overrides[get_db]())
    user = db.query(User).filter(User.email == "gone@x.com").one()
    db.delete(user)
    db.commit()
    db.close()

    resp = client.get("/bookings", headers=headers)
    assert resp.status_code == 401
    assert resp.json() == {"error": "User not found"}


def test_user_cannot_reach_admin_endpoints(client):
    headers = register_and_login(client, "a@x.com")
    assert client.get("/admin/users", headers=headers).status_code == 403
    assert client.get("/admin/stats", headers=headers).status_code == 403


def test_admin_cannot_create_booking(client):
    headers = login_headers(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    resp = client.post("/bookings", json=booking_payload(), headers=headers)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Insufficient permissions"}


def test_register_password_over_bcrypt_limit(client):
    resp = client.post("/register", json={"email": "long@x.com", "password": "p" * 80})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Password must be at most 72 bytes"}


def test_expired_token_is_rejected(client):
    register_and_login(client, "late@x.com")
    db = next(client.app.dependency_overrides[get_db]())
    user = db.query(User).filter(User.email == "late@x.com").one()
    db.close()

    issued = datetime.now(timezone.utc) - timedelta(hours=9)
    token = token_manager.issue(user.id, Role.USER, now=issued)
    resp = client.get("/bookings", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Token expired"}
