# Package
from flask import Blueprint

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

tasks_bp = Blueprint("tasks", __name__)

from taskbridge.tasks import routes
