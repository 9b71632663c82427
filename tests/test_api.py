"""HTTP tests: JSON auth endpoints, admin API, page redirects and cookie handling through the gate middleware."""

import os
import tempfile
import unittest
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import jwt
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cinecriticas.core.config import Settings
from cinecriticas.core.database import get_db
from cinecriticas.main import create_app
from cinecriticas.models import Base, User, WebSession
from cinecriticas.services.session_store import InMemorySessionStore
from cinecriticas.services.user_store import StoreUnavailableError

PREFIX = "/api/v1"


def _settings() -> Settings:
    return Settings(_env_file=None, JWT_SECRET="test-secret", DATABASE_URL="sqlite://")


def _sqlite_get_db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
        finally:
            db.close()

    return override


def _registration(username: str, password: str = "secret1") -> dict[str, str]:
    return {
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
        "confirmPassword": password,
    }


def _set_cookies(response) -> list[str]:
    return response.headers.get_list("set-cookie")


def _cookie_header(response, name: str) -> str | None:
    for header in _set_cookies(response):
        if header.startswith(f"{name}="):
            return header
    return None


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = _settings()
        self.sessions = InMemorySessionStore()
        self.app = create_app(self.settings, session_store=self.sessions)
        self.app.dependency_overrides[get_db] = _sqlite_get_db()
        self.client = self.new_client()

    def new_client(self) -> TestClient:
        return TestClient(self.app)

    def register(self, username: str, password: str = "secret1", client: TestClient | None = None):
        response = (client or self.new_client()).post(
            f"{PREFIX}/auth/register", json=_registration(username, password)
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class TestAuthEndpoints(ApiTestCase):
    def test_first_registration_is_admin(self) -> None:
        alice = self.register("alice")
        bob = self.register("bob")
        self.assertEqual(alice["user"]["role"], "admin")
        self.assertEqual(bob["user"]["role"], "user")
        self.assertEqual(alice["token_type"], "bearer")
        self.assertNotIn("password_hash", alice["user"])

    def test_register_sets_both_cookies(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/register", json=_registration("alice"))
        sid = _cookie_header(response, "sid")
        token = _cookie_header(response, "token")
        self.assertIsNotNone(sid)
        self.assertIsNotNone(token)
        self.assertIn("httponly", token.lower())
        self.assertIn("Max-Age=86400", token)

    def test_register_validation_and_conflicts(self) -> None:
        self.register("alice")
        short = self.client.post(f"{PREFIX}/auth/register", json=_registration("al"))
        self.assertEqual(short.status_code, 422)
        self.assertEqual(short.json()["detail"], "Username must be between 3 and 30 characters.")

        mismatch = dict(_registration("carol"), confirmPassword="other1")
        response = self.client.post(f"{PREFIX}/auth/register", json=mismatch)
        self.assertEqual(response.json()["detail"], "Passwords do not match.")

        taken = self.client.post(f"{PREFIX}/auth/register", json=_registration("alice"))
        self.assertEqual(taken.status_code, 409)

    def test_login_wrong_password_and_unknown_user_look_alike(self) -> None:
        self.register("alice")
        wrong = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice", "password": "wrongpass"})
        unknown = self.client.post(f"{PREFIX}/auth/login", json={"username": "nobody", "password": "wrongpass"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.json(), unknown.json())

    def test_login_missing_fields(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice"})
        self.assertEqual(response.status_code, 422)

    def test_me_with_bearer_token(self) -> None:
        self.register("alice")
        bob = self.register("bob")
        response = self.new_client().get(
            f"{PREFIX}/auth/me", headers={"Authorization": f"Bearer {bob['access_token']}"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "bob")
        self.assertIsNone(_cookie_header(response, "sid"))

    def test_me_anonymous(self) -> None:
        response = self.client.get(f"{PREFIX}/auth/me")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Not authenticated")
        self.assertEqual(response.headers["www-authenticate"], "Bearer")

    def test_bad_header_does_not_hide_cookie_token(self) -> None:
        alice = self.register("alice")
        client = self.new_client()
        client.cookies.set("token", alice["access_token"])
        response = client.get(f"{PREFIX}/auth/me", headers={"Authorization": "Bearer garbage"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "alice")

    def test_stale_token_cookie_is_cleared(self) -> None:
        now = datetime.now(UTC)
        expired = jwt.encode(
            {
                "sub": "2",
                "id": 2,
                "username": "bob",
                "email": "bob@example.com",
                "role": "user",
                "iat": now - timedelta(hours=25),
                "exp": now - timedelta(hours=1),
            },
            "test-secret",
            algorithm="HS256",
        )
        self.client.cookies.set("token", expired)
        response = self.client.get(f"{PREFIX}/auth/me")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Invalid or expired token")
        cleared = _cookie_header(response, "token")
        self.assertIsNotNone(cleared)
        self.assertIn("Max-Age=0", cleared)

    def test_logout_destroys_session_but_token_lives_on(self) -> None:
        client = self.new_client()
        issued = self.register("alice", client=client)
        self.assertEqual(client.get(f"{PREFIX}/auth/me").status_code, 200)

        response = client.post(f"{PREFIX}/auth/logout")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertIn("Max-Age=0", _cookie_header(response, "sid"))
        self.assertIn("Max-Age=0", _cookie_header(response, "token"))

        bearer = self.new_client().get(
            f"{PREFIX}/auth/me", headers={"Authorization": f"Bearer {issued['access_token']}"}
        )
        self.assertEqual(bearer.status_code, 200)


class TestUserAdministrationApi(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.register("alice")
        self.bob = self.register("bob")

    def auth(self, issued: dict) -> dict[str, str]:
        return {"Authorization": f"Bearer {issued['access_token']}"}

    def test_anonymous_gets_401_and_user_gets_403(self) -> None:
        self.assertEqual(self.new_client().get(f"{PREFIX}/users").status_code, 401)
        forbidden = self.new_client().get(f"{PREFIX}/users", headers=self.auth(self.bob))
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["detail"], "Admin access required")

    def test_admin_lists_users_newest_first(self) -> None:
        response = self.new_client().get(f"{PREFIX}/users", headers=self.auth(self.alice))
        self.assertEqual(response.status_code, 200)
        self.assertEqual([u["username"] for u in response.json()["users"]], ["bob", "alice"])

    def test_admin_cannot_delete_self(self) -> None:
        alice_id = self.alice["user"]["id"]
        response = self.new_client().delete(f"{PREFIX}/users/{alice_id}", headers=self.auth(self.alice))
        self.assertEqual(response.status_code, 400)

    def test_admin_deletes_other_user(self) -> None:
        client = self.new_client()
        bob_id = self.bob["user"]["id"]
        self.assertEqual(client.delete(f"{PREFIX}/users/{bob_id}", headers=self.auth(self.alice)).status_code, 204)
        self.assertEqual(client.delete(f"{PREFIX}/users/{bob_id}", headers=self.auth(self.alice)).status_code, 404)

    def test_create_and_update(self) -> None:
        client = self.new_client()
        created = client.post(
            f"{PREFIX}/users",
            headers=self.auth(self.alice),
            json={"username": "carol", "email": "carol@example.com", "password": "secret3", "role": "admin"},
        )
        self.assertEqual(created.status_code, 201, created.text)
        self.assertEqual(created.json()["role"], "admin")

        bob_id = self.bob["user"]["id"]
        promoted = client.patch(f"{PREFIX}/users/{bob_id}", headers=self.auth(self.alice), json={"role": "admin"})
        self.assertEqual(promoted.json()["role"], "admin")
        # bob's earlier token still says "user"
        self.assertEqual(client.get(f"{PREFIX}/users", headers=self.auth(self.bob)).status_code, 403)

        missing = client.patch(f"{PREFIX}/users/999", headers=self.auth(self.alice), json={"role": "admin"})
        self.assertEqual(missing.status_code, 404)


class TestPages(ApiTestCase):
    def test_anonymous_page_redirects_to_login_and_back(self) -> None:
        self.register("alice")
        self.register("bob", "secret2")
        client = self.new_client()

        response = client.get("/dashboard?tab=reviews", follow_redirects=False)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["location"], "/login")
        self.assertIsNotNone(_cookie_header(response, "sid"))

        login = client.post(
            "/login", data={"username": "bob", "password": "secret2"}, follow_redirects=False
        )
        self.assertEqual(login.status_code, 302)
        self.assertEqual(login.headers["location"], "/dashboard?tab=reviews")
        self.assertEqual(client.get("/dashboard").status_code, 200)

    def test_login_lands_on_role_home(self) -> None:
        self.register("alice")
        self.register("bob", "secret2")
        admin = self.new_client().post(
            "/login", data={"username": "alice", "password": "secret1"}, follow_redirects=False
        )
        user = self.new_client().post(
            "/login", data={"username": "bob", "password": "secret2"}, follow_redirects=False
        )
        self.assertEqual(admin.headers["location"], "/admin")
        self.assertEqual(user.headers["location"], "/dashboard")

    def test_login_form_error(self) -> None:
        response = self.client.post("/login", data={"username": "ghost", "password": "nopenope"})
        self.assertEqual(response.status_code, 401)
        self.assertIn("Incorrect username or password.", response.text)

    def test_register_form(self) -> None:
        response = self.client.post(
            "/register",
            data=_registration("alice"),
            follow_redirects=False,
        )
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["location"], "/")
        self.assertIsNotNone(_cookie_header(response, "token"))

    def test_register_form_honours_return_to_once(self) -> None:
        client = self.new_client()
        client.get("/dashboard", follow_redirects=False)
        response = client.post("/register", data=_registration("alice"), follow_redirects=False)
        self.assertEqual(response.headers["location"], "/dashboard")

        again = client.post(
            "/login", data={"username": "alice", "password": "secret1"}, follow_redirects=False
        )
        self.assertEqual(again.headers["location"], "/admin")

    def test_admin_page_forbidden_for_user(self) -> None:
        self.register("alice")
        client = self.new_client()
        self.register("bob", client=client)
        response = client.get("/admin")
        self.assertEqual(response.status_code, 403)
        self.assertIn("text/html", response.headers["content-type"])

    def test_cookie_token_is_mirrored_into_session(self) -> None:
        alice = self.register("alice")
        client = self.new_client()
        client.cookies.set("token", alice["access_token"])
        response = client.get("/dashboard")
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(_cookie_header(response, "sid"))

    def test_page_logout_redirects_home(self) -> None:
        client = self.new_client()
        self.register("alice", client=client)
        response = client.post("/logout", follow_redirects=False)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["location"], "/")


class TestHealth(ApiTestCase):
    def test_health(self) -> None:
        response = self.client.get(f"{PREFIX}/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["database"], "connected")
        self.assertEqual(body["session_backend"], "memory")


class TestStoreUnavailable(unittest.TestCase):
    """Backend outages turn into 503s, never into anonymous access or 500s."""

    def test_user_store_failure_on_login(self) -> None:
        app = create_app(_settings(), session_store=InMemorySessionStore())
        broken = MagicMock()
        broken.query.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

        def override() -> Generator[MagicMock, None, None]:
            yield broken

        app.dependency_overrides[get_db] = override
        response = TestClient(app).post(f"{PREFIX}/auth/login", json={"username": "alice", "password": "secret1"})
        self.assertEqual(response.status_code, 503)

    def test_session_store_failure_in_gate(self) -> None:
        sessions = MagicMock()
        sessions.get.side_effect = StoreUnavailableError("Session store is unavailable.")
        app = create_app(_settings(), session_store=sessions)
        client = TestClient(app)
        client.cookies.set("sid", "some-session-id")

        api = client.get(f"{PREFIX}/auth/me")
        self.assertEqual(api.status_code, 503)
        page = client.get("/dashboard")
        self.assertEqual(page.status_code, 503)
        self.assertIn("text/html", page.headers["content-type"])

    def test_session_store_failure_while_remembering_return_to(self) -> None:
        sessions = MagicMock()
        sessions.create.side_effect = StoreUnavailableError("Session store is unavailable.")
        app = create_app(_settings(), session_store=sessions)
        response = TestClient(app).get("/dashboard", follow_redirects=False)
        self.assertEqual(response.status_code, 503)
        self.assertIn("text/html", response.headers["content-type"])


class TestDatabaseFromSettings(unittest.TestCase):
    """create_app binds users and sessions to the DATABASE_URL it is given."""

    def test_app_uses_its_own_database_url(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        url = f"sqlite:///{os.path.join(tmp.name, 'app.db')}"
        settings = Settings(
            _env_file=None,
            JWT_SECRET="test-secret",
            DATABASE_URL=url,
            DB_AUTO_CREATE=True,
            SESSION_BACKEND="database",
        )
        app = create_app(settings)
        self.addCleanup(app.state.db_session_factory.kw["bind"].dispose)

        with TestClient(app) as client:
            response = client.post(f"{PREFIX}/auth/register", json=_registration("alice"))
            self.assertEqual(response.status_code, 201, response.text)
            self.assertEqual(client.get(f"{PREFIX}/auth/me").status_code, 200)

        engine = create_engine(url)
        self.addCleanup(engine.dispose)
        db = sessionmaker(bind=engine)()
        try:
            self.assertEqual([u.username for u in db.query(User).all()], ["alice"])
            self.assertEqual(db.query(WebSession).count(), 1)
        finally:
            db.close()
