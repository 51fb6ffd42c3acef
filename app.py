import logging
import os

from config import config
from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from services.errors import TrackerError


def configure_logging(level_name):
    """Root logger level from LOG_LEVEL; keeps existing handlers (e.g. pytest's)"""
    level = getattr(logging, str(level_name).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(level)


def register_error_handlers(app):
    from models import db

    @app.errorhandler(TrackerError)
    def handle_tracker_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__}: {error.message}")
        else:
            app.logger.info(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return jsonify({"success": False, "error": error.description, "error_type": error.name}), error.code

        db.session.rollback()
        app.logger.error(f"Unhandled error: {error}", exc_info=True)
        return jsonify({"success": False, "error": "Internal server error", "error_type": "InternalError"}), 500


def create_app(config_name=None):
    """Application factory pattern"""
    if config_name is None:
        config_name = os.getenv("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    configure_logging(app.config["LOG_LEVEL"])

    # Initialize CORS for the frontend
    allowed_origins = app.config["ALLOWED_ORIGINS"]
    CORS(
        app,
        resources={
            r"/scenarios/*": {"origins": allowed_origins},
            r"/reviews/*": {"origins": allowed_origins},
            r"/knowledge-units/*": {"origins": allowed_origins},
            r"/stats/*": {"origins": allowed_origins},
        },
    )

    # Initialize SQLAlchemy
    from models import db, enable_sqlite_savepoints

    db.init_app(app)
    with app.app_context():
        enable_sqlite_savepoints(db.engine)

    # Initialize Flask-Migrate
    migrate = Migrate(app, db)

    # Import all models to ensure they are registered with SQLAlchemy
    from models.knowledge_unit import KnowledgeUnit
    from models.review_facet import ReviewFacet
    from models.scenario import Scenario

    # Services shared by all requests (store, generator, lock tables)
    from services.container import init_container

    init_container(app)

    # Register API blueprints
    from routes.knowledge_units import bp as knowledge_units_bp
    from routes.reviews import bp as reviews_bp
    from routes.scenarios import bp as scenarios_bp
    from routes.stats import bp as stats_bp

    app.register_blueprint(scenarios_bp)
    app.register_blueprint(reviews_bp)
    app.register_blueprint(knowledge_units_bp)
    app.register_blueprint(stats_bp)

    register_error_handlers(app)

    # Home route
    @app.route("/")
    def home():
        return jsonify({"message": "Scenario tracker API", "version": "1.0.0"})

    # Health check route
    @app.route("/health")
    def health_check():
        try:
            db.session.execute(db.text("SELECT 1"))
            return jsonify({"status": "healthy", "database": "connected"}), 200
        except Exception as e:
            app.logger.error(f"Health check failed: {e}")
            return jsonify({"status": "unhealthy", "error": str(e)}), 500

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True, port=5001)
