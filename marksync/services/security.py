from functools import wraps

from flask import g, jsonify, request

from marksync.extensions import db
from marksync.models import ApiToken, utcnow


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    return token or None


def _token_row_from_request():
    token = bearer_token()
    if not token:
        return None
    token_row = ApiToken.query.filter_by(token_hash=ApiToken.hash_token(token)).first()
    if not token_row or token_row.revoked_at is not None:
        return None
    if not token_row.user.is_active:
        return None
    token_row.last_used_at = utcnow()
    db.session.commit()
    return token_row


def api_auth_required(func):
    @wraps(func)
    def wrapped(*args, **kwargs):
        token_row = _token_row_from_request()
        if not token_row:
            return jsonify({"error": "authentication required"}), 401
        g.api_token = token_row
        g.api_user = token_row.user
        return func(*args, **kwargs)

    return wrapped
