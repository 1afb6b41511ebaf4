# Package
from flask import Blueprint

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

imports_bp = Blueprint("imports", __name__)

from taskbridge.imports import routes
