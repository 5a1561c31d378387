"""Bearer-token guard for admin endpoints.

Two modes, chosen by the ``ADMIN_AUTH_MODE`` app setting:

- ``token``: the bearer value must equal ``ADMIN_TOKEN``; with no token
  configured every admin request is refused.
- ``firebase``: the bearer value is a Firebase ID token whose decoded
  claims carry ``admin: true``.
"""

import hmac
import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional

from firebase_admin import auth as firebase_auth
from flask import current_app, g, jsonify, request

from storefront.firestore import get_firebase_app

__all__ = ["require_admin", "bearer_token"]

logger = logging.getLogger(__name__)


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


def _verify_firebase(token: str) -> Optional[Dict[str, Any]]:
    try:
        claims = firebase_auth.verify_id_token(token, app=get_firebase_app())
    except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError) as e:
        logger.warning(f"Rejected admin ID token: {e}")
        return None
    if claims.get("admin") is not True:
        logger.warning(f"User {claims.get('uid')} lacks the admin claim")
        return None
    return claims


def _authenticate(token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    mode = current_app.config.get("ADMIN_AUTH_MODE", "token")
    if mode == "firebase":
        return _verify_firebase(token)

    expected = current_app.config.get("ADMIN_TOKEN")
    if not expected:
        logger.error("ADMIN_TOKEN is not configured; admin API disabled")
        return None
    if hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        return {"uid": "admin-token", "admin": True}
    return None


def require_admin(view: Callable) -> Callable:
    """Reject the request with 401 unless it carries a valid admin bearer token."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        claims = _authenticate(bearer_token())
        if claims is None:
            return jsonify({"error": "Not authenticated"}), 401
        g.admin = claims
        return view(*args, **kwargs)

    return wrapper
