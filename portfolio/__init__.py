"""
Portfolio CMS Application Factory
"""
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from config import config

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


def _configure_logging(app):
    level = app.config.get("LOG_LEVEL", "INFO")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("portfolio").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_name='default'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Storage settings are checked here so a bad deploy fails at boot
    from portfolio.assets import init_assets
    init_assets(app)

    # Register blueprints
    from portfolio.auth import auth_bp
    from portfolio.api import api_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(api_bp, url_prefix='/api')

    # Health check endpoint
    @app.route('/healthz')
    def healthz():
        """Health check for load balancers and monitoring"""
        from sqlalchemy import text
        from sqlalchemy.exc import SQLAlchemyError
        from portfolio.assets import get_assets

        try:
            db.session.execute(text('SELECT 1'))
            db_status = "ok"
        except SQLAlchemyError as e:
            db_status = f"error: {e}"

        return jsonify({
            "status": "ok" if db_status == "ok" else "degraded",
            "version": app.config["APP_VERSION"],
            "database": db_status,
            "storage": get_assets().storage.name,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    # Create tables on first boot (init_db.py handles resets)
    with app.app_context():
        from sqlalchemy import inspect
        from portfolio import models  # noqa: F401

        inspector = inspect(db.engine)
        if not inspector.get_table_names():
            app.logger.info('No tables found, creating...')
            db.create_all()

    return app
