# Package
from flask import Blueprint

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

recurring_bp = Blueprint("recurring", __name__)

from taskbridge.recurrence import routes
