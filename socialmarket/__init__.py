import os
import logging

import click
from flask import Flask, jsonify

from socialmarket.config import config_by_name
from socialmarket.extensions import ai_provider, db, identity, limiter, migrate, rate_limiter


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
    rate_limiter.init_app(app)
    identity.init_app(app)
    ai_provider.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from socialmarket import models  # noqa: F401

    # --- Request gating: "api" tier, then the auth gate, then per-route tiers ---
    from socialmarket.middleware.rate_limit import init_rate_limit_middleware
    from socialmarket.middleware.auth import init_auth_middleware
    init_rate_limit_middleware(app)
    init_auth_middleware(app)
    limiter.init_app(app)

    # --- Register blueprints ---
    from socialmarket.blueprints.auth import auth_bp
    from socialmarket.blueprints.billing import billing_bp
    from socialmarket.blueprints.marketplace import marketplace_bp
    from socialmarket.blueprints.comments import comments_bp
    from socialmarket.blueprints.ai import ai_bp
    from socialmarket.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(marketplace_bp)
    app.register_blueprint(comments_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(webhooks_bp)

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok"})

    # --- Error handlers (JSON envelope) ---
    from socialmarket.errors import register_error_handlers
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only: nothing here should ever be rendered as a document.
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        response.headers["Cache-Control"] = "no-store"
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

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify the supporter / VIP price IDs exist (same mode as the key).

        Uses STRIPE_SECRET_KEY, STRIPE_PRICE_SUPPORTER, STRIPE_PRICE_VIP.
        """
        import stripe as _stripe

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        _stripe.api_key = api_key

        def check_price(label, price_id):
            if not price_id:
                click.echo(f"  {label}: (not set)")
                return
            try:
                price = _stripe.Price.retrieve(price_id)
                livemode = getattr(price, "livemode", "?")
                recurring = getattr(price, "recurring", None)
                click.echo(f"  {label}: {price_id}")
                click.echo(f"    exists=True, livemode={livemode}, recurring={bool(recurring)}")
                if livemode is True and key_mode != "Live":
                    click.echo("    WARNING: This price is Live but your key is Test.")
                elif livemode is False and key_mode == "Live":
                    click.echo("    WARNING: This price is Test but your key is Live.")
                if not recurring:
                    click.echo("    WARNING: Subscription tiers need a recurring price.")
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {label}: {price_id}")
                click.echo(f"    ERROR: {e}")
            click.echo("")

        click.echo("STRIPE_PRICE_SUPPORTER:")
        check_price("supporter", app.config.get("STRIPE_PRICE_SUPPORTER"))
        click.echo("STRIPE_PRICE_VIP:")
        check_price("vip", app.config.get("STRIPE_PRICE_VIP"))

    @app.cli.command("resync-premium-flags")
    @click.option("--dry-run", is_flag=True, help="Report drift without writing.")
    def resync_premium_flags(dry_run):
        """Re-derive every user's premium flag from their subscription row.

        Repairs users left out of sync with their subscription (e.g. a
        crash between two writes).

        Usage:
            flask resync-premium-flags
            flask resync-premium-flags --dry-run
        """
        from socialmarket.services.billing_service import resync_all_premium_flags

        changed = resync_all_premium_flags()
        if dry_run:
            db.session.rollback()
            click.echo(f"{changed} user(s) out of sync (dry run, nothing written).")
        else:
            db.session.commit()
            click.echo(f"{changed} user(s) re-synced.")
