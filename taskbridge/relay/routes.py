"""
Webhook endpoint for lifecycle events emitted by an external database
trigger.
"""
from flask import jsonify, request

from taskbridge.relay import relay_bp, logger
from taskbridge.relay.dispatch import emit_change
from taskbridge.relay.events import ChangeEvent


@relay_bp.route("/events", methods=["POST"])
def receive_event():
    data = request.get_json(silent=True) or {}

    table = data.get("table")
    if table and table != "tasks":
        return jsonify({"status": "ignored", "reason": "not a task event"}), 200

    try:
        event = ChangeEvent.from_webhook(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    if not event.owner:
        return jsonify({"status": "ignored", "reason": "no owner"}), 200

    try:
        result = emit_change(event)
    except Exception as e:
        logger.error("Error in /relay/events", error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500

    if result is None:
        return jsonify({"status": "ignored", "reason": "relay disabled"}), 200
    return jsonify(result.to_dict()), 200
