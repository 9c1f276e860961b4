from __future__ import annotations

from flask import current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from marksync.api import api_bp
from marksync.extensions import db
from marksync.models import ApiToken, Bookmark, User, utcnow
from marksync.services.changes import (
    CHANGE_ACTION_CREATE,
    CHANGE_ACTION_DELETE,
    changes_since,
    latest_cursor,
    log_change_event,
)
from marksync.services.common import clean_text
from marksync.services.security import api_auth_required


@api_bp.errorhandler(SQLAlchemyError)
def handle_database_error(exc):
    db.session.rollback()
    current_app.logger.warning("Record store failure on %s: %s", request.path, exc)
    return jsonify({"error": "record store unavailable"}), 500


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "MarkSync"})


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = clean_text(payload.get("username"))
    password = payload.get("password") or ""
    token_name = clean_text(payload.get("token_name")) or "MarkSync session"

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    current_app.logger.info("Issued session token for user %s", user.id)
    return jsonify({"token": token, "token_name": token_name, "user": user.as_identity()})


@api_bp.route("/auth/session", methods=["GET"])
@api_auth_required
def session_identity():
    return jsonify({"user": g.api_user.as_identity()})


@api_bp.route("/auth/session", methods=["DELETE"])
@api_auth_required
def revoke_session():
    g.api_token.revoked_at = utcnow()
    db.session.commit()
    current_app.logger.info("Revoked session token for user %s", g.api_user.id)
    return jsonify({"status": "signed_out"})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required
def bookmarks_list_api():
    user = g.api_user
    items = (
        Bookmark.query.filter_by(user_id=user.id).order_by(Bookmark.id.desc()).all()
    )
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    title = clean_text(payload.get("title"))
    url = clean_text(payload.get("url"))
    if not title or not url:
        return jsonify({"error": "title and url are required"}), 400

    bookmark = Bookmark(user_id=user.id, title=title, url=url)
    db.session.add(bookmark)
    db.session.flush()
    log_change_event(user.id, bookmark.id, CHANGE_ACTION_CREATE)
    db.session.commit()
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
@api_auth_required
def bookmarks_delete_api(bookmark_id: str):
    user = g.api_user
    bookmark = None
    if bookmark_id.isdigit():
        bookmark = Bookmark.query.filter_by(id=int(bookmark_id), user_id=user.id).first()
    if not bookmark:
        return jsonify({"deleted": []})

    deleted = bookmark.as_dict()
    entity_id = bookmark.id
    db.session.delete(bookmark)
    log_change_event(user.id, entity_id, CHANGE_ACTION_DELETE)
    db.session.commit()
    return jsonify({"deleted": [deleted]})


@api_bp.route("/changes", methods=["GET"])
@api_auth_required
def changes_api():
    user = g.api_user
    since = request.args.get("since", type=int)
    if since is None:
        return jsonify({"events": [], "cursor": latest_cursor(user.id), "has_more": False})
    page_size = current_app.config["CHANGE_FEED_PAGE_SIZE"]
    limit = request.args.get("limit", default=page_size, type=int)
    limit = max(1, min(limit, page_size))
    return jsonify(changes_since(user.id, since, limit))
