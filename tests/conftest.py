"""
Pytest configuration and fixtures for the FinOps API tests.

Provides fixtures for:
- In-memory SQLite database (fresh schema per test)
- In-memory KV store standing in for Redis
- Tenants, users of every role and their JWTs
- HTTP client over ASGITransport, report storage in tmp_path, a recording
  mailer and a mock OAuth provider
"""
import os

# Settings are read at import time, so configure the environment first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["AUTH_COOKIE_SECURE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import time
from typing import AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
import redis
from httpx import ASGITransport, AsyncClient

from finops_api.core.kv import KVStore, set_kv_store
from finops_api.core.mailer import Mailer, get_mailer
from finops_api.core.oauth import OAuthClient, get_oauth_client
from finops_api.core.security import build_token_claims, create_access_token, get_password_hash
from finops_api.core.storage import ReportStorage, get_report_storage
from finops_api.database import Base, SessionLocal, engine
from finops_api.main import app
from finops_api.models import Tenant, User
from finops_api.models.tenant import TenantStatus
from finops_api.models.user import UserRole, UserStatus

TEST_PASSWORD = "correct-horse-battery"


class FakeRedis:
    """The subset of the redis client KVStore uses, kept in a dict."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expires_at: Dict[str, float] = {}

    def _expire(self, key: str) -> None:
        expires_at = self.expires_at.get(key)
        if expires_at is not None and expires_at <= time.time():
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def get(self, key):
        self._expire(key)
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        if ex:
            self.expires_at[key] = time.time() + ex
        else:
            self.expires_at.pop(key, None)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                removed += 1
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return removed

    def ping(self):
        return True


class UnavailableRedis:
    """Every command fails like an unreachable server."""

    def _fail(self, *args, **kwargs):
        raise redis.ConnectionError("Connection refused")

    get = set = delete = ping = _fail


@pytest.fixture(scope="session")
def password_hash() -> str:
    """bcrypt is slow, hash the shared test password once."""
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test and drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fake_redis() -> FakeRedis:
    fake = FakeRedis()
    set_kv_store(KVStore(fake))
    yield fake
    set_kv_store(None)


@pytest.fixture
def kv(fake_redis) -> KVStore:
    return KVStore(fake_redis)


@pytest.fixture
def db(setup_database):
    session = SessionLocal()
    yield session
    session.close()


def _make_tenant(db, name: str, slug: str, **kwargs) -> Tenant:
    tenant = Tenant(
        name=name,
        slug=slug,
        subdomain=kwargs.pop("subdomain", slug),
        admin_email=f"admin@{slug}.com",
        status=kwargs.pop("status", TenantStatus.ACTIVE),
        **kwargs
    )
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def _make_user(db, tenant, email: str, role: UserRole, password_hash=None, **kwargs) -> User:
    user = User(
        tenant_id=tenant.id if tenant else None,
        email=email,
        name=kwargs.pop("name", email.split("@")[0].title()),
        hashed_password=password_hash,
        role=role,
        status=kwargs.pop("status", UserStatus.ACTIVE),
        **kwargs
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def tenant(db) -> Tenant:
    return _make_tenant(db, "Acme Corp", "acme")


@pytest.fixture
def other_tenant(db) -> Tenant:
    return _make_tenant(db, "Globex", "globex")


@pytest.fixture
def make_tenant(db) -> Callable[..., Tenant]:
    def factory(name: str, slug: str, **kwargs) -> Tenant:
        return _make_tenant(db, name, slug, **kwargs)
    return factory


@pytest.fixture
def make_user(db, password_hash) -> Callable[..., User]:
    def factory(tenant, email: str, role: UserRole = UserRole.VIEWER, with_password: bool = True, **kwargs) -> User:
        return _make_user(db, tenant, email, role, password_hash if with_password else None, **kwargs)
    return factory


@pytest.fixture
def owner(make_user, tenant) -> User:
    return make_user(tenant, "owner@acme.com", UserRole.OWNER)


@pytest.fixture
def admin(make_user, tenant) -> User:
    return make_user(tenant, "admin@acme.com", UserRole.ADMIN)


@pytest.fixture
def manager(make_user, tenant) -> User:
    return make_user(tenant, "manager@acme.com", UserRole.MANAGER)


@pytest.fixture
def analyst(make_user, tenant) -> User:
    return make_user(tenant, "analyst@acme.com", UserRole.ANALYST)


@pytest.fixture
def viewer(make_user, tenant) -> User:
    return make_user(tenant, "viewer@acme.com", UserRole.VIEWER)


@pytest.fixture
def other_admin(make_user, other_tenant) -> User:
    return make_user(other_tenant, "admin@globex.com", UserRole.ADMIN)


@pytest.fixture
def superadmin(make_user) -> User:
    return make_user(None, "root@finops.app", UserRole.OWNER, is_superadmin=True)


def token_for(user: User) -> str:
    return create_access_token(build_token_claims(user))


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def report_storage(tmp_path) -> ReportStorage:
    storage = ReportStorage(str(tmp_path / "reports"))
    app.dependency_overrides[get_report_storage] = lambda: storage
    yield storage
    app.dependency_overrides.pop(get_report_storage, None)


class RecordingMailer(Mailer):
    """Keeps sent mail in memory instead of delivering it."""

    def __init__(self):
        super().__init__(host="smtp.test")
        self.sent: List[Dict] = []

    def send(self, to, subject, body, attachments=None, sensitive=False) -> bool:
        self.sent.append({"to": list(to), "subject": subject, "body": body, "attachments": attachments or []})
        return True


@pytest.fixture
def mailer() -> RecordingMailer:
    recorder = RecordingMailer()
    app.dependency_overrides[get_mailer] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_mailer, None)


class MockOAuthProvider:
    """
    Answers token and userinfo calls for any provider.

    Tests set token_status / token_body / userinfo to shape the replies and
    read requests to see what was sent. token_text and userinfo_text, when
    set, replace the JSON body with raw text.
    """

    def __init__(self):
        self.token_status = 200
        self.token_body: Dict = {"access_token": "provider-access-token", "refresh_token": "provider-refresh-token"}
        self.userinfo: Dict = {}
        self.token_text: Optional[str] = None
        self.userinfo_text: Optional[str] = None
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.token_text is not None:
                return httpx.Response(self.token_status, text=self.token_text)
            return httpx.Response(self.token_status, json=self.token_body)
        if self.userinfo_text is not None:
            return httpx.Response(200, text=self.userinfo_text)
        return httpx.Response(200, json=self.userinfo)


@pytest.fixture
def oauth_provider() -> MockOAuthProvider:
    provider = MockOAuthProvider()
    client = OAuthClient(transport=httpx.MockTransport(provider.handler))
    app.dependency_overrides[get_oauth_client] = lambda: client
    yield provider
    app.dependency_overrides.pop(get_oauth_client, None)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Test HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def headers_for() -> Callable[[User], Dict[str, str]]:
    """Bearer headers for a user: headers_for(admin)."""
    return auth_headers


@pytest.fixture
def token_of() -> Callable[[User], str]:
    return token_for
