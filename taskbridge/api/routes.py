"""
API routes for sync history and per-owner CRM integrations.
"""
from flask import current_app, jsonify, request

from taskbridge.api import api_bp, logger
from taskbridge.crm import CrmError, get_crm_client
from taskbridge.crm.client import normalize_webhook_url
from taskbridge.models import Integration, db
from taskbridge.services.sync_log_service import SyncLogService


@api_bp.route("/logs", methods=["GET"])
def get_logs():
    """Relay and materializer outcomes, newest first."""
    owner = request.args.get("owner")
    try:
        limit = min(int(request.args.get("limit", 100)), 500)
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400

    entries = SyncLogService.history(owner, limit)
    return jsonify({
        "logs": [entry.to_dict() for entry in entries],
        "total_count": len(entries),
    }), 200


@api_bp.route("/integrations", methods=["GET"])
def list_integrations():
    owner = request.args.get("owner")
    query = Integration.query
    if owner:
        query = query.filter(Integration.owner == owner)
    integrations = query.order_by(Integration.id).all()
    return jsonify({"integrations": [
        {
            "id": i.id,
            "owner": i.owner,
            "service_name": i.service_name,
            "webhook_url": i.webhook_url,
            "is_active": i.is_active,
        }
        for i in integrations
    ]}), 200


@api_bp.route("/integrations", methods=["POST"])
def save_integration():
    """Create or replace the owner's CRM webhook."""
    data = request.get_json(silent=True) or {}
    owner = data.get("owner")
    webhook_url = (data.get("webhook_url") or "").strip()
    service_name = data.get("service_name") or current_app.config.get("CRM_SERVICE_NAME", "bitrix24")
    if not owner or not webhook_url:
        return jsonify({"error": "owner and webhook_url are required"}), 400
    is_active = data.get("is_active", True)
    if not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be true or false"}), 400

    integration = Integration.query.filter_by(owner=owner, service_name=service_name).first()
    if integration is None:
        integration = Integration(owner=owner, service_name=service_name)
        db.session.add(integration)
    integration.webhook_url = normalize_webhook_url(webhook_url)
    integration.is_active = is_active
    db.session.commit()
    logger.info("Integration saved", owner=owner, service_name=service_name, is_active=integration.is_active)
    return jsonify({
        "id": integration.id,
        "owner": integration.owner,
        "service_name": integration.service_name,
        "webhook_url": integration.webhook_url,
        "is_active": integration.is_active,
    }), 200


@api_bp.route("/integrations/users", methods=["GET"])
def list_crm_users():
    """CRM users an owner can assign as responsible; [] without an active integration."""
    owner = request.args.get("owner")
    client = get_crm_client(owner)
    if client is None:
        return jsonify([]), 200
    try:
        users = client.list_users()
    except CrmError as e:
        logger.warning("Failed to fetch CRM users", owner=owner, error=str(e), detail=e.detail)
        return jsonify({"error": "Failed to fetch users", "details": e.detail}), 400
    finally:
        client.close()
    return jsonify(users), 200
