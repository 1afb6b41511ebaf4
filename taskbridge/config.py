import os
from dotenv import load_dotenv

load_dotenv()


def _env_float(name, default):
    value = os.environ.get(name)
    if value in (None, ""):
        return default
    return float(value)


class Config:
    """Base configuration class with common settings."""
    # CRM (Bitrix24-style inbound webhook), used when an owner has no integration row
    CRM_WEBHOOK_URL = os.environ.get("CRM_WEBHOOK_URL")
    CRM_SERVICE_NAME = os.environ.get("CRM_SERVICE_NAME", "bitrix24")
    CRM_DISK_FOLDER_ID = os.environ.get("CRM_DISK_FOLDER_ID")
    CRM_REQUEST_TIMEOUT = _env_float("CRM_REQUEST_TIMEOUT", 30.0)

    # Recurring task scheduler
    SCHEDULE_TIMEZONE = os.environ.get("SCHEDULE_TIMEZONE", "UTC")
    RECURRING_POLL_SECONDS = int(os.environ.get("RECURRING_POLL_SECONDS", "60"))

    # Change relay
    RELAY_ENABLED = os.environ.get("RELAY_ENABLED", "true").lower() not in ("0", "false", "no")
    DUPLICATE_WINDOW_SECONDS = _env_float("DUPLICATE_WINDOW_SECONDS", 5.0)

    # Bulk import
    IMPORT_TIME_BUDGET_SECONDS = _env_float("IMPORT_TIME_BUDGET_SECONDS", 50.0)
    IMPORT_ROW_DELAY_SECONDS = _env_float("IMPORT_ROW_DELAY_SECONDS", 0.5)
    IMPORT_DEADLINE_DAYS = int(os.environ.get("IMPORT_DEADLINE_DAYS", "15"))
    IMPORT_CURRENCY = os.environ.get("IMPORT_CURRENCY", "BRL")
    IMPORT_ASSIGNED_BY_ID = int(os.environ.get("IMPORT_ASSIGNED_BY_ID", "1"))
    IMPORT_OPERATOR_INSTRUCTIONS = os.environ.get(
        "IMPORT_OPERATOR_INSTRUCTIONS",
        "RETURN CHECKLIST:\n"
        "1. Check the received product for damage.\n"
        "2. Confirm the SKU matches the order.\n"
        "3. Photograph the package and the product.\n"
        "4. If everything is fine, approve the refund on the marketplace.\n"
        "5. Update stock in the ERP.\n"
        "6. Move the deal to \"Done\".",
    )

    # Local attachment storage
    BLOB_STORE_DIR = os.environ.get("BLOB_STORE_DIR", "blobs")

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")

    # CORS configuration
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")


class LocalConfig(Config):
    """Configuration for local development."""
    ENV = "local"
    DEBUG = True


class SandboxConfig(Config):
    """Configuration for sandbox/staging environment."""
    ENV = "sandbox"
    DEBUG = False


class ProductionConfig(Config):
    """Configuration for production environment."""
    ENV = "production"
    DEBUG = False


def get_config():
    """Get the appropriate configuration class based on environment variable.

    Environment is determined by FLASK_ENV or ENVIRONMENT variable:
    - 'local' or 'development' -> LocalConfig
    - 'sandbox' or 'staging' -> SandboxConfig
    - 'production' or 'prod' -> ProductionConfig

    Defaults to LocalConfig if not set.
    """
    env = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")).lower()

    if env in ["local", "development", "dev"]:
        return LocalConfig
    elif env in ["sandbox", "staging", "stage"]:
        return SandboxConfig
    elif env in ["production", "prod"]:
        return ProductionConfig
    else:
        # Default to local for safety
        return LocalConfig
