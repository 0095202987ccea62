# Overview: Request identity and access decorators for API routes.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .services.cart_service import CartIdentity
from .validation import ValidationError, clean_text, coerce_int


def _header_identity() -> tuple:
    raw_user = request.headers.get("X-User-Id")
    user_id = coerce_int(raw_user, "X-User-Id", minimum=1) if raw_user else None
    session_id = clean_text(request.headers.get("X-Session-Id"), "X-Session-Id", max_length=128)
    return user_id, session_id


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def with_identity(f):
    """
    Resolve the caller's cart identity from request headers.

    Sets:
    - g.user_id: account id from X-User-Id (None for guests)
    - g.session_id: guest session token from X-Session-Id
    - g.identity: CartIdentity

    Returns 400 when neither header is present.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user_id, session_id = _header_identity()
            identity = CartIdentity(user_id=user_id, session_id=session_id)
        except ValidationError as e:
            return jsonify({"error": str(e), "errors": e.errors}), 400

        g.user_id = user_id
        g.session_id = session_id
        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def require_account(f):
    """Like with_identity, but an authenticated account (X-User-Id) is mandatory."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user_id, session_id = _header_identity()
        except ValidationError as e:
            return jsonify({"error": str(e), "errors": e.errors}), 400
        if user_id is None:
            return jsonify({"error": "Authentication required"}), 401

        g.user_id = user_id
        g.session_id = session_id
        g.identity = CartIdentity(user_id=user_id, session_id=session_id)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the admin API token (Authorization: Bearer <ADMIN_API_TOKEN>).

    With no token configured every admin request is refused.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_TOKEN")
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401
        if not expected or not hmac.compare_digest(token, expected):
            return jsonify({"error": "Permission denied"}), 403
        g.admin = True
        return f(*args, **kwargs)

    return decorated_function


def require_cron(f):
    """Scheduled-job endpoints: checked against CRON_SECRET only when one is configured."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if secret:
            token = _bearer_token()
            if not token or not hmac.compare_digest(token, secret):
                return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated_function
