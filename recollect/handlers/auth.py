"""
Login / logout / first-run setup.

- POST /api/auth/setup    create the first admin; refused once any user exists
- POST /api/auth/login    password check -> token + `session` cookie
- POST /api/auth/logout   drop the session, clear the cookie
- GET  /api/auth/check    report whether the session cookie is still good
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from flask import jsonify, make_response, request

from recollect import gateway
from recollect.auth import (
    SESSION_COOKIE,
    create_token,
    hash_password,
    new_session_id,
    require_privileged,
    verify_password,
    verify_token,
)
from recollect.context import current_requester, services
from recollect.errors import Unauthorized, ValidationError, json_errors

logger = logging.getLogger(__name__)


def _set_cookie(response, value: str, max_age: int) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        value,
        max_age=max_age,
        httponly=True,
        secure=True,
        samesite="Strict",
        path="/",
    )


@json_errors("Setup failed")
def setup(body: Optional[Dict[str, Any]] = None):
    body = body or {}
    with services().unit_of_work() as session:
        if gateway.count_users(session) > 0:
            raise ValidationError("Setup already completed")

        email, password, name = body.get("email"), body.get("password"), body.get("name")
        if not email or not password or not name:
            raise ValidationError("All fields required")

        gateway.insert_user(session, email, hash_password(password), name, "admin")

    logger.info("Created initial admin %s", email)
    return {"success": True, "message": "Admin user created successfully"}, 201


@json_errors("Login failed")
def login(body: Optional[Dict[str, Any]] = None):
    body = body or {}
    svc = services()
    email, password = body.get("email"), body.get("password")
    if not email or not password:
        raise Unauthorized("Invalid credentials")

    with svc.unit_of_work() as session:
        user = gateway.find_user_by_email(session, email)
        if user is None or not verify_password(password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        user_data = {"id": user.id, "email": user.email, "name": user.name, "role": user.role}

    ttl = svc.settings.session_ttl_seconds
    token = create_token(
        {"sub": str(user_data["id"]), "email": user_data["email"], "role": user_data["role"]},
        svc.settings.jwt_secret,
        ttl,
    )
    session_id = new_session_id()
    svc.sessions.put(
        session_id,
        {"user_id": user_data["id"], "token": token, "expires": int(time.time()) + ttl},
        ttl,
    )

    response = make_response(jsonify({"token": token, "user": user_data}), 200)
    _set_cookie(response, session_id, ttl)
    return response


@json_errors("Logout failed")
def logout():
    require_privileged(current_requester())
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        services().sessions.delete(session_id)

    response = make_response(jsonify({"success": True}), 200)
    _set_cookie(response, "", 0)
    return response


@json_errors("Auth check failed")
def check():
    svc = services()
    session_id = request.cookies.get(SESSION_COOKIE)
    session = svc.sessions.get(session_id) if session_id else None
    if not session or not session.get("token"):
        return {"authenticated": False}, 200
    try:
        requester = verify_token(session["token"], svc.settings.jwt_secret)
    except Unauthorized:
        return {"authenticated": False}, 200
    return {"authenticated": True, "user": requester.to_dict()}, 200
