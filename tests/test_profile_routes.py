import asyncio

import pytest
from fastapi.testclient import TestClient

from authgate.avatar import AvatarPipeline, AvatarSampleResult, AvatarTracker
from authgate.identity import IdentityStore
from authgate.main import create_app

from conftest import FakeAvatarPipeline, sign_in_with_email


@pytest.fixture
def signed_in(client, email_provider):
    sign_in_with_email(client, email_provider, "ada@example.com")
    return client


def test_profile_requires_session(client):
    res = client.post("/api/profile", json={"handle": "ada", "displayName": "Ada"})
    assert res.status_code == 401
    assert client.get("/api/profile").status_code == 401


def test_save_profile(signed_in, avatar_pipeline):
    res = signed_in.post("/api/profile", json={
        "handle": "@Ada_L",
        "displayName": "  Ada   Lovelace ",
        "bio": "Wrote the first program",
    })

    assert res.status_code == 200, res.text
    assert res.json() == {"success": True, "nextPath": "/dashboard", "avatarStatus": "ready"}
    assert len(avatar_pipeline.calls) == 1

    me = signed_in.get("/api/auth/me").json()
    assert me["profileDisplayName"] == "Ada Lovelace"

    profile = signed_in.get("/api/profile").json()
    assert profile == {
        "handle": "ada_l",
        "displayName": "Ada Lovelace",
        "bio": "Wrote the first program",
        "avatarStatus": "ready",
    }


def test_profile_update_keeps_own_handle(signed_in):
    signed_in.post("/api/profile", json={"handle": "ada", "displayName": "Ada"})
    res = signed_in.post("/api/profile", json={"handle": "ADA", "displayName": "Countess"})

    assert res.status_code == 200
    assert signed_in.get("/api/profile").json()["displayName"] == "Countess"


def test_handle_taken_by_another_user(client, email_provider):
    sign_in_with_email(client, email_provider, "ada@example.com")
    client.post("/api/profile", json={"handle": "ada", "displayName": "Ada"})
    client.post("/api/auth/logout")

    sign_in_with_email(client, email_provider, "grace@example.com")
    res = client.post("/api/profile", json={"handle": "Ada", "displayName": "Grace"})

    assert res.status_code == 409
    assert res.json() == {"error": "That handle is taken."}
    assert client.get("/api/auth/next").json() == {"nextPath": "/profile/create"}


@pytest.mark.parametrize("payload, message", [
    ({"handle": "ab", "displayName": "Ada"}, "Handle must be 3-20 chars using letters, numbers, or _"),
    ({"handle": "bad-handle", "displayName": "Ada"}, "Handle must be 3-20 chars using letters, numbers, or _"),
    ({"handle": "ada", "displayName": "   "}, "Name is required"),
])
def test_invalid_profile(signed_in, payload, message):
    res = signed_in.post("/api/profile", json=payload)

    assert res.status_code == 400
    assert res.json() == {"error": message}


def test_long_fields_are_clipped(signed_in):
    signed_in.post("/api/profile", json={"handle": "ada", "displayName": "A" * 60, "bio": "b" * 300})
    profile = signed_in.get("/api/profile").json()

    assert len(profile["displayName"]) == 40
    assert len(profile["bio"]) == 220


def test_profile_not_found(signed_in):
    res = signed_in.get("/api/profile")
    assert res.status_code == 404
    assert res.json() == {"error": "Profile not found"}


def test_unconfigured_avatar_pipeline_does_not_block_save(settings, database, clock, email_provider, sms_provider):
    app = create_app(settings, database=database, email_provider=email_provider, sms_provider=sms_provider, clock=clock)

    with TestClient(app) as client:
        sign_in_with_email(client, email_provider, "ada@example.com")
        res = client.post("/api/profile", json={"handle": "ada", "displayName": "Ada"})

        assert res.status_code == 200
        assert res.json()["avatarStatus"] == "failed"
        assert res.json()["nextPath"] == "/dashboard"


class CrashingPipeline(AvatarPipeline):
    name = "crashing"

    async def generate_sample(self, user_id):
        raise RuntimeError("GPU on fire")


class TestAvatarTracker:

    @pytest.fixture
    def user_id(self, database, clock):
        return IdentityStore(database, clock=clock).resolve_or_create_user("email", "ada@example.com")

    def run(self, tracker, user_id):
        return asyncio.run(tracker.run(user_id))

    def test_ready(self, database, clock, user_id):
        tracker = AvatarTracker(database, FakeAvatarPipeline(), clock=clock)

        assert self.run(tracker, user_id) == "ready"
        assert tracker.get_status(user_id) == {
            "status": "ready",
            "provider": "fake-sample",
            "sample_image_path": "avatar-samples/sample.png",
            "last_error": None,
        }

    def test_crash_is_recorded_not_raised(self, database, clock, user_id):
        tracker = AvatarTracker(database, CrashingPipeline(), clock=clock)

        assert self.run(tracker, user_id) == "failed"
        status = tracker.get_status(user_id)
        assert status["status"] == "failed"
        assert status["last_error"] == "GPU on fire"

    def test_error_is_clipped(self, database, clock, user_id):
        pipeline = FakeAvatarPipeline(AvatarSampleResult(ok=False, error="x" * 500))
        tracker = AvatarTracker(database, pipeline, clock=clock)

        self.run(tracker, user_id)
        assert len(tracker.get_status(user_id)["last_error"]) == 300

    def test_unknown_user_has_no_status(self, database, clock):
        assert AvatarTracker(database, AvatarPipeline(), clock=clock).get_status("nobody") is None
