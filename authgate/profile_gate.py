from typing import Optional

from authgate.auth import SessionUser

LOGIN_PATH = "/login"
PROFILE_SETUP_PATH = "/profile/create"
LANDING_PATH = "/dashboard"


def next_path_for(session_user: Optional[SessionUser]) -> str:
    """
    Where a client should go next.

    Every sign-in completion endpoint asks this function, so the email and
    phone flows always redirect the same way.
    """
    if session_user is None:
        return LOGIN_PATH
    if not session_user.profile_display_name:
        return PROFILE_SETUP_PATH
    return LANDING_PATH
