from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate


db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()


@login_manager.unauthorized_handler
def unauthorized():
    # API only: no login page to redirect to
    return jsonify({"error": "unauthorized", "message": "Login required"}), 401


def init_extensions(app):
    """Initialize db, migrations and the session-based login manager."""
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    return app
