import os
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from extensions import db, login_manager, init_extensions
from logger import configure_app_logging
from referral.errors import LedgerError


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------------------------------
    configure_app_logging(app)

    # ------------------------------------------------------------------------------------------
    # SQLite fallback needs the instance directory
    # ------------------------------------------------------------------------------------------
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(app.instance_path, exist_ok=True)

    # ------------------------------------------------------------------------------------------
    # Initialize extensions
    # ------------------------------------------------------------------------------------------
    init_extensions(app)

    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    # ------------------------------------------------------------------------------------------
    # Flask-Login user_loader - inside create_app to avoid circular imports
    # ------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        from models import User
        return db.session.get(User, int(user_id))

    @app.route("/healthz")
    def healthz():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            app.logger.error(f"Health check failed: {e}")
            return {"status": "degraded", "database": "unavailable"}, 503
        return {"status": "ok"}, 200

    return app


def register_blueprints(app):
    from blueprints.wallet import bp as wallet_bp
    from blueprints.admin import admin_bp
    from blueprints.payment_webhooks import bp as webhook_bp

    app.register_blueprint(wallet_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhook_bp)


def register_error_handlers(app):
    """Every error leaves the API as {"error": code, "message": text}."""

    @app.errorhandler(LedgerError)
    def handle_ledger_error(e):
        db.session.rollback()
        log = app.logger.error if e.http_status >= 500 else app.logger.info
        log(f"{e.code}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        code = (e.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code, "message": e.description}), e.code


def register_commands(app):
    from cli import ledger_cli
    app.cli.add_command(ledger_cli)


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    application = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug_mode = application.config.get("DEBUG", False)
    application.run(debug=debug_mode, host="0.0.0.0", port=port)
