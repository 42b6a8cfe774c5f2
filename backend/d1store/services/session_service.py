# Overview: Signed-cookie role sessions for the two back-office roles.

"""
Sessions are a role claim stored in Flask's signed session cookie. There are
no user accounts: each role has one configured login.
"""

from __future__ import annotations

import hmac
import time
from typing import Any

from flask import current_app, session


ROLE_ADMIN = "admin"
ROLE_DISPATCH_ADMIN = "dispatchAdmin"
VALID_ROLES = (ROLE_ADMIN, ROLE_DISPATCH_ADMIN)


class SessionError(ValueError):
    """Raised when a login request is malformed."""


def _configured_users() -> list[dict[str, str]]:
    config = current_app.config
    return [
        {
            "role": ROLE_ADMIN,
            "email": config["ADMIN_EMAIL"],
            "password": config["ADMIN_PASSWORD"],
            "displayName": config["ADMIN_DISPLAY_NAME"],
        },
        {
            "role": ROLE_DISPATCH_ADMIN,
            "email": config["DISPATCH_ADMIN_EMAIL"],
            "password": config["DISPATCH_ADMIN_PASSWORD"],
            "displayName": config["DISPATCH_ADMIN_DISPLAY_NAME"],
        },
    ]


def authenticate(email: str | None, password: str | None, role: str | None = None) -> dict[str, str] | None:
    """
    Match credentials against the configured logins.

    Raises:
        SessionError: missing email/password or unknown role
    """
    email = (email or "").strip()
    password = password or ""
    if not email or not password:
        raise SessionError("Email and password are required.")
    if role and role not in VALID_ROLES:
        raise SessionError("Invalid role.")

    for candidate in _configured_users():
        if role and candidate["role"] != role:
            continue
        if candidate["email"].lower() == email.lower() and hmac.compare_digest(candidate["password"], password):
            return {k: candidate[k] for k in ("role", "email", "displayName")}
    return None


def start_session(user: dict[str, str]) -> None:
    session.clear()
    session.permanent = True
    session["user"] = dict(user)
    session["exp"] = int(time.time()) + int(current_app.config["SESSION_TTL_SECONDS"])


def end_session() -> None:
    session.clear()


def current_user() -> dict[str, Any] | None:
    user = session.get("user")
    exp = session.get("exp")
    if not isinstance(user, dict) or user.get("role") not in VALID_ROLES:
        return None
    if not isinstance(exp, int) or exp <= int(time.time()):
        return None
    return user
