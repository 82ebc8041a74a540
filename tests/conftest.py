import pathlib
import sys
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from jobdesk.domain import Actor
from jobdesk.issuance import DocumentIssuanceCoordinator
from jobdesk.job_workflow import JobWorkflow
from jobdesk.main import create_app
from jobdesk.repositories import UsersRepository
from jobdesk.store_backends import store

JWT_TEST_SECRET = "jwt_test_secret_for_jobdesk_suite_32b"

ACTORS = {
    "admin": Actor(id="u_admin", display_name="Ada Admin", role="ADMIN", department="MANAGEMENT"),
    "manager": Actor(id="u_manager", display_name="Max Manager", role="MANAGER", department="MANAGEMENT"),
    "office": Actor(id="u_office", display_name="Olive Office", role="OFFICER", department="OFFICE"),
    "worker": Actor(id="u_worker", display_name="Walt Worker", role="WORKER", department="CAR_SERVICE"),
    "worker2": Actor(id="u_worker2", display_name="Wendy Worker", role="WORKER", department="CAR_SERVICE"),
    "mechanic": Actor(id="u_mechanic", display_name="Mick Mechanic", role="WORKER", department="MECHANIC"),
    "viewer": Actor(id="u_viewer", display_name="Vic Viewer", role="VIEWER", department="OFFICE"),
}


def _issue_token(*, secret: str, actor: Actor) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": actor.id,
        "name": actor.display_name,
        "role": actor.role,
        "department": actor.department,
        "exp": int((now + timedelta(minutes=30)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    def __init__(self, client: TestClient, *, jwt_secret: str, actor: Actor):
        self._client = client
        self._jwt_secret = jwt_secret
        self._actor = actor

    def as_actor(self, actor: Actor) -> "AuthenticatedClient":
        return AuthenticatedClient(self._client, jwt_secret=self._jwt_secret, actor=actor)

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        if url.startswith("/api/v1/") and "Authorization" not in headers:
            token = _issue_token(secret=self._jwt_secret, actor=self._actor)
            headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def patch(self, url: str, **kwargs):
        return self.request("PATCH", url, **kwargs)


@pytest.fixture(autouse=True)
def reset_store(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_TEST_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp,role")
    store.reset()
    store.set_clock(lambda: datetime.now(UTC))
    users = UsersRepository(store)
    for actor in ACTORS.values():
        users.upsert(
            user_id=actor.id,
            display_name=actor.display_name,
            role=actor.role,
            department=actor.department,
        )
    yield


@pytest.fixture
def actors() -> dict[str, Actor]:
    return dict(ACTORS)


@pytest.fixture
def workflow() -> JobWorkflow:
    return JobWorkflow(store)


@pytest.fixture
def coordinator() -> DocumentIssuanceCoordinator:
    return DocumentIssuanceCoordinator(store)


@pytest.fixture
def new_job(workflow: JobWorkflow):
    def _create(department: str = "CAR_SERVICE", **overrides) -> dict:
        payload = {
            "department": department,
            "customer": {"name": "Somchai Garage", "phone": "0812345678"},
            "description": "Engine knocks on cold start",
            "license_plate": "1AB-2345",
        }
        payload.update(overrides)
        return workflow.create_job(payload, ACTORS["office"])

    return _create


@pytest.fixture
def client() -> AuthenticatedClient:
    app = create_app()
    base = TestClient(app)
    return AuthenticatedClient(base, jwt_secret=JWT_TEST_SECRET, actor=ACTORS["office"])
