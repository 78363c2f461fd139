"""
Password + signed-token auth with server-side sessions.

- Passwords are hashed with passlib (pbkdf2_sha256).
- A successful login signs a JWT (python-jose, HS256) and stores
  `{user_id, token, expires}` in the session store under a random id.
  The id is returned as the `session` cookie, the token in the body.
- A request is privileged when either credential checks out:
    1) `session` cookie -> live session -> token verifies
    2) `Authorization: Bearer <token>` -> token verifies

Nothing here keeps per-user state in process memory; `resolve_requester`
builds a fresh `Requester` for every request.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Mapping

from jose import JWTError, jwt
from passlib.context import CryptContext

from recollect.errors import Unauthorized
from recollect.sessions import SessionStore
from recollect.visibility import ANONYMOUS, Requester

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE = "session"

_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return _pwd.verify(password, password_hash)


def create_token(claims: dict[str, Any], secret: str, ttl_seconds: int) -> str:
    to_encode = dict(claims)
    to_encode["exp"] = int(time.time()) + ttl_seconds
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> Requester:
    """
    Decode a token into a `Requester`.

    Raises Unauthorized if the signature, expiry or claims are bad.
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise Unauthorized("Invalid token") from exc
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise Unauthorized("Invalid token") from exc
    return Requester(user_id=user_id, email=claims.get("email"), role=claims.get("role"))


def _bearer(headers: Mapping[str, str]) -> str | None:
    header = headers.get("Authorization") or ""
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def resolve_requester(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    secret: str,
    sessions: SessionStore,
) -> Requester:
    """
    Identify the caller, or return ANONYMOUS.

    Bad credentials are not an error here: the public endpoints simply fall
    back to the anonymous view. Use `require_privileged` on admin routes.
    """
    session_id = cookies.get(SESSION_COOKIE)
    if session_id:
        session = sessions.get(session_id)
        if session and session.get("token"):
            try:
                return verify_token(session["token"], secret)
            except Unauthorized:
                logger.debug("session %s holds an invalid token", session_id)

    token = _bearer(headers)
    if token:
        try:
            return verify_token(token, secret)
        except Unauthorized:
            logger.debug("rejected bearer token")
    return ANONYMOUS


def require_privileged(requester: Requester) -> Requester:
    if not requester.is_privileged:
        raise Unauthorized("Unauthorized")
    return requester


def new_session_id() -> str:
    return str(uuid.uuid4())
