import atexit
import os

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify
from flask_cors import CORS

from taskbridge.api import api_bp
from taskbridge.imports import imports_bp
from taskbridge.logging_config import configure_logging, get_logger
from taskbridge.models import db
from taskbridge.recurrence import recurring_bp
from taskbridge.relay import relay_bp
from taskbridge.tasks import tasks_bp

logger = get_logger(__name__)


def run_recurring_job(app):
    """One scheduler tick: materialize due recurring tasks."""
    from taskbridge.recurrence.materializer import TaskMaterializer

    with app.app_context():
        try:
            outcomes = TaskMaterializer(timezone=app.config.get("SCHEDULE_TIMEZONE", "UTC")).run_once()
            if outcomes:
                logger.info("Scheduled recurring run finished", materialized=len(outcomes))
        except RuntimeError as e:
            # previous tick or a manual run still holds the lock
            logger.warning("Scheduled recurring run skipped", reason=str(e))
        except Exception as e:
            logger.error("Scheduled recurring run failed", error=str(e), exc_info=True)


def init_scheduler(app):
    """Start the recurring task trigger."""

    # --- Prevent scheduler duplication in multi-worker environments ---
    # Only run the scheduler on one instance
    if os.environ.get("WERKZEUG_RUN_MAIN") != "true" and not os.environ.get("IS_SCHEDULER_INSTANCE"):
        logger.info("Skipping scheduler startup on this worker")
        return None

    executors = {"default": ThreadPoolExecutor(1)}
    scheduler = BackgroundScheduler(executors=executors)

    scheduler.add_job(
        func=run_recurring_job,
        args=[app],
        trigger="interval",
        seconds=app.config.get("RECURRING_POLL_SECONDS", 60),
        id="recurring_materializer",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))

    logger.info("Scheduler started", poll_seconds=app.config.get("RECURRING_POLL_SECONDS", 60))
    return scheduler


def create_app(config_overrides=None):
    # Import config after dotenv is loaded
    from taskbridge.config import get_config
    from taskbridge.db_config import configure_database

    config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(log_level=app.config.get("LOG_LEVEL", "INFO"), log_file=app.config.get("LOG_FILE"))

    # Configure database separately
    configure_database(app, config_overrides)

    logger.info(f"Starting application in {config_class.ENV} environment")
    logger.info(f"Database URI: {app.config.get('SQLALCHEMY_DATABASE_URI', 'Not set')[:50]}...")

    allowed_origins = app.config.get("CORS_ORIGINS", "*")
    if allowed_origins != "*":
        allowed_origins = [origin.strip() for origin in allowed_origins.split(",")]
    CORS(app,
         resources={r"/*": {"origins": allowed_origins}},
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"])

    db.init_app(app)
    with app.app_context():
        db.create_all()

    app.register_blueprint(tasks_bp, url_prefix="/tasks")
    app.register_blueprint(recurring_bp, url_prefix="/recurring")
    app.register_blueprint(relay_bp, url_prefix="/relay")
    app.register_blueprint(imports_bp, url_prefix="/imports")
    app.register_blueprint(api_bp)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "environment": config_class.ENV}), 200

    return app
