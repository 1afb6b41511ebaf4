# Package
from flask import Blueprint

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

relay_bp = Blueprint("relay", __name__)

from taskbridge.relay import routes
