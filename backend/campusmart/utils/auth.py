from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import g, jsonify, request

from campusmart.extensions import db
from campusmart.models import User
from campusmart.utils.jwt_utils import decode_token, get_bearer_token
from campusmart.utils.observability import get_request_id


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, resolved once per request and passed explicitly."""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def resolve_actor(token: str | None) -> Actor | None:
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, uid)
    if user is None:
        return None
    return Actor(id=int(user.id), role=(user.role or "buyer").strip().lower())


def current_actor() -> Actor | None:
    if "actor" not in g:
        g.actor = resolve_actor(get_bearer_token(request.headers.get("Authorization", "")))
    return g.actor


def _auth_error(code: str, message: str, status: int):
    payload = {"success": False, "error": code, "message": message}
    rid = get_request_id()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), status


def require_actor(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        actor = current_actor()
        if actor is None:
            return _auth_error("UNAUTHORIZED", "Authentication required", 401)
        return view(actor, *args, **kwargs)

    return wrapper


def require_admin(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        actor = current_actor()
        if actor is None:
            return _auth_error("UNAUTHORIZED", "Unauthorized. Admin access required.", 401)
        if not actor.is_admin:
            return _auth_error("FORBIDDEN", "Admin access required", 403)
        return view(actor, *args, **kwargs)

    return wrapper
