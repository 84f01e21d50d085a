import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter, paypal


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    paypal.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Register blueprints ---
    from app.blueprints.auth import auth_bp
    from app.blueprints.billing import billing_bp
    from app.blueprints.admin import admin_bp
    from app.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF — PayPal posts server-to-server
    csrf.exempt(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"error": "Unauthorized"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        # JSON-only API: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-plans")
    @click.option("--admin-email", default="admin@frumtoronto.local", help="Admin email")
    @click.option("--admin-password", default="admin123", help="Admin password")
    def seed_plans(admin_email, admin_password):
        """Create the default plan catalog and an admin user.

        Idempotent: existing plans (by slug) and users (by email) are left alone.

        Usage:
            flask seed-plans
            flask seed-plans --admin-email admin@example.com --admin-password s3cret
        """
        from app.models.plan import SubscriptionPlan
        from app.models.user import User

        catalog = [
            {"slug": "free", "name": "Free", "price_monthly": 0, "price_yearly": 0,
             "description": "Basic directory listing", "display_order": 0},
            {"slug": "standard", "name": "Standard", "price_monthly": 15, "price_yearly": 150,
             "description": "Description, website, hours and map", "display_order": 1},
            {"slug": "premium", "name": "Premium", "price_monthly": 35, "price_yearly": 350,
             "description": "Featured placement, photos and search priority", "display_order": 2},
        ]
        for entry in catalog:
            if SubscriptionPlan.query.filter_by(slug=entry["slug"]).first():
                click.echo(f"Plan already exists: {entry['slug']}")
                continue
            db.session.add(SubscriptionPlan(**entry))
            click.echo(f"Created plan: {entry['slug']}")

        if User.query.filter_by(email=admin_email).first():
            click.echo(f"Admin user already exists: {admin_email}")
        else:
            db.session.add(User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                full_name="Admin",
                is_admin=True,
            ))
            click.echo(f"Created admin user: {admin_email}")

        db.session.commit()

    @app.cli.command("sync-paypal-plans")
    def sync_paypal_plans_command():
        """Create missing PayPal products/plans for the current PAYPAL_MODE.

        Same as POST /admin/subscription-plans/sync-paypal. Run once per mode
        after adding or repricing a plan.
        """
        from app.services.paypal_service import PayPalError
        from app.services.plan_sync_service import sync_plans_to_paypal

        if not paypal.is_configured():
            click.echo("ERROR: PayPal credentials for this mode are not set.")
            return

        try:
            product_id, results = sync_plans_to_paypal()
        except PayPalError as e:
            click.echo(f"ERROR: {e}")
            return

        click.echo("")
        click.echo("=" * 60)
        click.echo(f"PayPal mode: {paypal.mode}")
        click.echo(f"Product:     {product_id}")
        click.echo("=" * 60)
        for result in results:
            click.echo(f"  {result['planName']}: {result['action']}")
            if result.get("error"):
                click.echo(f"    ERROR: {result['error']}")
        click.echo("=" * 60)
