"""
Session tokens and the request guard for the Flask API.

A token only names its subject; role and organisational links are reloaded
from the store on every request, so the session keeps nothing else.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import jsonify, request

from protelab.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from protelab.errors import Unauthenticated
from protelab.models import AccessContext

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# {token: {"user_id": str, "jti": str, "created_at": datetime, "last_activity": datetime}}
sessions: Dict[str, Dict[str, Any]] = {}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_token(ctx: AccessContext) -> str:
    issued = _now()
    payload = {
        "sub": ctx.user_id,
        "jti": uuid.uuid4().hex,
        "iat": issued,
        "exp": issued + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decoded payload, or None when the token is expired, forged or lacks a subject."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM],
                             options={"require": ["sub", "exp"]})
    except jwt.InvalidTokenError:
        return None
    return payload


def open_session(token: str, ctx: AccessContext) -> Dict[str, Any]:
    payload = verify_token(token)
    started = _now()
    sessions[token] = {
        "user_id": ctx.user_id,
        "jti": payload["jti"] if payload else None,
        "created_at": started,
        "last_activity": started,
    }
    return sessions[token]


def end_sessions_for(user_id: str) -> int:
    """Drop every open session of *user_id*; returns how many were dropped."""
    doomed = [tok for tok, data in sessions.items() if data["user_id"] == user_id]
    for tok in doomed:
        del sessions[tok]
    if doomed:
        logger.info("Closed %d session(s) of %s", len(doomed), user_id)
    return len(doomed)


def _request_token() -> Optional[str]:
    """Bearer token from the Authorization header, or `?token=` for links."""
    header = request.headers.get("Authorization")
    if header is not None:
        scheme, _, value = header.partition(" ")
        if scheme.lower() != "bearer" or not value.strip():
            raise Unauthenticated("Invalid authorization header format")
        return value.strip()
    return request.args.get("token")


def _unauthorized(message: str):
    return jsonify({"error": Unauthenticated.code, "message": message}), 401


def token_required(f):
    """Reject the request unless it carries a live token bound to an open session."""
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            token = _request_token()
        except Unauthenticated as e:
            return _unauthorized(e.message)
        if not token:
            return _unauthorized("Authentication token is missing")

        payload = verify_token(token)
        if not payload:
            return _unauthorized("Invalid or expired token")

        session_data = sessions.get(token)
        if session_data is None or session_data["user_id"] != payload["sub"]:
            return _unauthorized("Session not found. Please login again.")

        session_data["last_activity"] = _now()
        request.session_data = session_data
        request.token = token
        return f(*args, **kwargs)

    return decorated


def cleanup_expired_sessions() -> int:
    """Remove sessions idle for longer than TOKEN_EXPIRY_HOURS."""
    cutoff = _now() - timedelta(hours=TOKEN_EXPIRY_HOURS)
    idle = [tok for tok, data in sessions.items() if data["last_activity"] < cutoff]
    for tok in idle:
        del sessions[tok]
    if idle:
        logger.info("Removed %d expired session(s)", len(idle))
    return len(idle)
