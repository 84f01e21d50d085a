"""Auth blueprint — /auth/*

Session login/logout for the billing API (JSON in, JSON out).
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from app.extensions import limiter
from app.models.user import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify({"csrfToken": generate_csrf()})


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    """Body: {"email", "password", "remember" (optional)}."""
    body = request.get_json(silent=True) or {}
    email = (body.get("email") or "").lower().strip()
    password = body.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        logger.info(f"Failed login for {email}")
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "This account has been deactivated."}), 403

    login_user(user, remember=bool(body.get("remember")))
    return jsonify({
        "id": user.id,
        "email": user.email,
        "fullName": user.full_name,
        "isAdmin": bool(user.is_admin),
    })


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify({
        "id": current_user.id,
        "email": current_user.email,
        "fullName": current_user.full_name,
        "isAdmin": bool(current_user.is_admin),
    })
