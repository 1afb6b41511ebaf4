from flask import current_app

from taskbridge.logging_config import get_logger
from taskbridge.relay.events import ChangeEvent

logger = get_logger(__name__)


def build_change_relay():
    """Relay wired to the app's CRM integrations, blob store and task write-back."""
    from taskbridge.crm import get_crm_client
    from taskbridge.relay.relay import ChangeRelay
    from taskbridge.storage.blob_store import get_blob_store
    from taskbridge.tasks.service import apply_relay_write_back

    return ChangeRelay(
        client_factory=get_crm_client,
        blob_store=get_blob_store(),
        write_back=apply_relay_write_back,
        timezone=current_app.config.get("SCHEDULE_TIMEZONE", "UTC"),
        duplicate_window_seconds=current_app.config.get("DUPLICATE_WINDOW_SECONDS", 5.0),
    )


def emit_change(event: ChangeEvent):
    """
    Deliver one committed lifecycle event to the relay, synchronously.

    Relay errors are absorbed by the relay itself; the returned RelayResult
    is informational.
    """
    if not current_app.config.get("RELAY_ENABLED", True):
        logger.debug("Relay disabled, dropping event", type=event.type.value)
        return None
    relay = build_change_relay()
    result = relay.handle(event)
    logger.info(
        "Change relayed",
        type=event.type.value,
        tag=event.tag.value,
        task_id=event.subject.get("id"),
        status=result.status,
        reason=result.reason,
    )
    return result
