from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from authgate.avatar import AvatarPipeline, AvatarSampleResult
from authgate.config import Settings
from authgate.database import Database
from authgate.main import create_app
from authgate.providers.results import Ok, Err, ProviderErrorKind

SECRET = "test-session-secret"


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeEmailProvider:
    name = "fake-email"

    def __init__(self):
        self.sent = []
        self.send_result = Ok()
        # token_hash -> result
        self.links = {}
        # access_token -> result
        self.access_tokens = {}

    async def send_magic_link(self, email, redirect_url):
        self.sent.append((email, redirect_url))
        return self.send_result

    async def verify_magic_link(self, token_hash, link_type):
        return self.links.get(token_hash, Err(ProviderErrorKind.DENIED, "Token has expired or is invalid"))

    async def resolve_email_from_access_token(self, access_token):
        return self.access_tokens.get(access_token, Err(ProviderErrorKind.DENIED, "invalid JWT"))


class FakeSmsProvider:
    name = "fake-sms"

    def __init__(self):
        self.sent = []
        self.send_result = Ok()
        # phone -> code that will be approved
        self.codes = {}
        self.check_error = None

    async def send_verification_code(self, phone):
        self.sent.append(phone)
        return self.send_result

    async def check_verification_code(self, phone, code):
        if self.check_error is not None:
            return self.check_error
        if self.codes.get(phone) == code:
            return Ok()
        return Err(ProviderErrorKind.DENIED, "Invalid code")


class FakeAvatarPipeline(AvatarPipeline):
    name = "fake-sample"

    def __init__(self, result=None):
        self.result = result or AvatarSampleResult(ok=True, path="avatar-samples/sample.png")
        self.calls = []

    async def generate_sample(self, user_id):
        self.calls.append(user_id)
        return self.result


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        session_secret_key=SECRET,
        database_url=f"sqlite:///{tmp_path / 'authgate.db'}",
        debug=False,
        auth_provider="supabase",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(tmp_path: Path):
    db = Database(f"sqlite:///{tmp_path / 'authgate.db'}")
    db.init()
    yield db
    db.dispose()


@pytest.fixture
def settings(tmp_path: Path):
    return make_settings(tmp_path)


@pytest.fixture
def email_provider():
    return FakeEmailProvider()


@pytest.fixture
def sms_provider():
    return FakeSmsProvider()


@pytest.fixture
def avatar_pipeline():
    return FakeAvatarPipeline()


@pytest.fixture
def app(settings, database, clock, email_provider, sms_provider, avatar_pipeline):
    return create_app(
        settings,
        database=database,
        email_provider=email_provider,
        sms_provider=sms_provider,
        avatar_pipeline=avatar_pipeline,
        clock=clock
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def sign_in_with_email(client: TestClient, email_provider: FakeEmailProvider, email: str):
    token_hash = f"link-{email}"
    email_provider.links[token_hash] = Ok(email=email)
    return client.post("/api/auth/complete-magic-link", json={"tokenHash": token_hash, "type": "magiclink"})
