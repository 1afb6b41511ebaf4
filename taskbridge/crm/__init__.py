from flask import current_app

from taskbridge.crm.client import CrmClient
from taskbridge.crm.errors import CrmError, UnknownFieldError


def resolve_webhook_url(owner):
    """
    Webhook URL for an owner's active CRM integration.

    Falls back to the app-wide CRM_WEBHOOK_URL. Returns None when the owner
    has an integration row that is switched off, or nothing is configured.
    """
    from taskbridge.models import Integration

    service_name = current_app.config.get("CRM_SERVICE_NAME", "bitrix24")
    integration = None
    if owner:
        integration = Integration.query.filter_by(owner=owner, service_name=service_name).one_or_none()
    if integration is not None:
        return integration.webhook_url if integration.is_active else None
    return current_app.config.get("CRM_WEBHOOK_URL")


def get_crm_client(owner=None):
    '''
    Returns a CrmClient for the owner's integration, or None if the owner has
    no active integration.
    '''
    webhook_url = resolve_webhook_url(owner)
    if not webhook_url:
        return None
    return CrmClient(
        webhook_url,
        timeout=current_app.config.get("CRM_REQUEST_TIMEOUT", 30.0),
        disk_folder_id=current_app.config.get("CRM_DISK_FOLDER_ID"),
    )


__all__ = ["CrmClient", "CrmError", "UnknownFieldError", "get_crm_client", "resolve_webhook_url"]
