import pytest

from authgate.auth import SessionUser
from authgate.profile_gate import next_path_for, LOGIN_PATH, PROFILE_SETUP_PATH, LANDING_PATH


@pytest.mark.parametrize("session_user, expected", [
    (None, LOGIN_PATH),
    (SessionUser(user_id="u1"), PROFILE_SETUP_PATH),
    (SessionUser(user_id="u1", profile_display_name=""), PROFILE_SETUP_PATH),
    (SessionUser(user_id="u1", profile_display_name="Ada"), LANDING_PATH),
])
def test_next_path(session_user, expected):
    assert next_path_for(session_user) == expected


def test_paths():
    assert (LOGIN_PATH, PROFILE_SETUP_PATH, LANDING_PATH) == ("/login", "/profile/create", "/dashboard")
