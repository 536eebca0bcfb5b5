"""
Shared fixtures: an in-memory engine, a recording mail backend and a small
cast of users.

    admin   - ADMIN
    owner   - EMPLOYEE, owns the "Apollo" project
    alice   - EMPLOYEE, member of Apollo
    bob     - EMPLOYEE, not a member of anything
"""

import pytest
import pytest_asyncio

from tracker.auth.context import Principal
from tracker.auth.passwords import hash_password
from tracker.config import Settings
from tracker.core.models import Provider, Role, User
from tracker.core.utils import utc_now
from tracker.engine import create_engine
from tracker.integrations.email import EmailDeliveryError, EmailService
from tracker.storage import Collections, create_local_storage

PASSWORD = "correct-horse-battery"


class RecordingEmailService(EmailService):
    """Keeps every rendered message instead of sending it. Set `fail` to break delivery."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.sent: list[dict] = []
        self.fail = False

    async def _deliver(self, to, subject, html, text):
        if self.fail:
            raise EmailDeliveryError("mail backend unavailable")
        self.sent.append({"to": list(to), "subject": subject, "text": text})

    def recipients(self) -> list[str]:
        return [address for message in self.sent for address in message["to"]]

    def clear(self) -> None:
        self.sent.clear()


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        environment="test",
        data_dir=str(tmp_path),
        jwt_secret_key="test-access-secret",
        jwt_refresh_secret_key="test-refresh-secret",
        email_backend="console",
        redis_url="",
        sentry_dsn="",
        aws_access_key_id="",
        aws_secret_access_key="",
    )


@pytest.fixture
def email(settings):
    return RecordingEmailService(settings)


@pytest.fixture
def storage(tmp_path):
    return create_local_storage(str(tmp_path))


@pytest.fixture
def engine(settings, storage, email):
    return create_engine(settings, storage, email)


@pytest.fixture
def metadata(storage):
    return storage.metadata


# =============================================================================
# Users
# =============================================================================


async def insert_user(metadata, username: str, role: Role = Role.EMPLOYEE, password: str | None = PASSWORD) -> User:
    """Write a verified user straight into storage."""
    now = utc_now()
    data = await metadata.insert(Collections.USERS, {
        "username": username,
        "name": username.title(),
        "email": f"{username}@example.com",
        "password_hash": hash_password(password) if password else None,
        "providers": [Provider.LOCAL.value] if password else [Provider.GOOGLE.value],
        "google_id": None,
        "role": role.value,
        "created_at": now,
        "updated_at": now,
    })
    return User(**data)


@pytest.fixture
def make_user(metadata):
    async def factory(username: str, role: Role = Role.EMPLOYEE) -> Principal:
        return Principal.from_user(await insert_user(metadata, username, role))
    return factory


@pytest_asyncio.fixture
async def admin(make_user):
    return await make_user("admin", Role.ADMIN)


@pytest_asyncio.fixture
async def owner(make_user):
    return await make_user("owner")


@pytest_asyncio.fixture
async def alice(make_user):
    return await make_user("alice")


@pytest_asyncio.fixture
async def bob(make_user):
    return await make_user("bob")


# =============================================================================
# Projects and tickets
# =============================================================================


@pytest_asyncio.fixture
async def project(engine, email, owner, alice):
    """Apollo: owned by `owner`, with `alice` as a member."""
    created = (await engine.projects.create_project(owner, "Apollo", "Moon shot")).unwrap()
    (await engine.membership.add_member(owner, created.id, alice.user_id)).unwrap()
    email.clear()
    return (await engine.projects.get_project(owner, created.id)).unwrap()


@pytest_asyncio.fixture
async def ticket(engine, email, project, owner):
    created = (await engine.tickets.create_ticket(owner, project.id, "Fix the launch pad")).unwrap()
    email.clear()
    return created


async def activities(metadata, **filters) -> list[dict]:
    return await metadata.query(Collections.ACTIVITIES, filters, limit=1000)
