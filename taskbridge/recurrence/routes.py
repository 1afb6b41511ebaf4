"""
API routes for recurring task definitions and the materializer trigger.
"""
from flask import current_app, jsonify, request

from taskbridge.datetime_utils import parse_iso_datetime
from taskbridge.models import RecurringTask, db
from taskbridge.recurrence import recurring_bp, logger
from taskbridge.recurrence.definitions import create_definition, set_active, update_definition
from taskbridge.recurrence.materializer import TaskMaterializer


def _timezone():
    return current_app.config.get("SCHEDULE_TIMEZONE", "UTC")


@recurring_bp.route("/run", methods=["POST"])
def run_recurring():
    """
    Materialize every due definition now.

    Optional JSON body {"now": "<iso datetime>"} pins the evaluation instant.
    """
    data = request.get_json(silent=True) or {}
    try:
        now = parse_iso_datetime(data.get("now"), _timezone())
    except ValueError as e:
        return jsonify({"error": f"Invalid 'now': {e}"}), 400

    try:
        outcomes = TaskMaterializer(timezone=_timezone()).run_once(now)
    except RuntimeError as e:
        # another trigger holds the lock
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        logger.error("Error in /recurring/run", error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500

    return jsonify({
        "processed": len(outcomes),
        "succeeded": sum(1 for o in outcomes if o.status == "success"),
        "failed": sum(1 for o in outcomes if o.status == "error"),
        "outcomes": [o.to_dict() for o in outcomes],
    }), 200


@recurring_bp.route("/definitions", methods=["GET"])
def list_definitions():
    owner = request.args.get("owner")
    query = RecurringTask.query
    if owner:
        query = query.filter(RecurringTask.owner == owner)
    definitions = query.order_by(RecurringTask.next_run, RecurringTask.id).all()
    return jsonify({
        "definitions": [d.to_dict() for d in definitions],
        "total_count": len(definitions),
    }), 200


@recurring_bp.route("/definitions", methods=["POST"])
def create_definition_route():
    data = dict(request.get_json(silent=True) or {})
    owner = data.pop("owner", None) or request.args.get("owner")
    try:
        definition = create_definition(owner, data, _timezone())
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error("Error creating recurring task", error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    logger.info("Recurring task created", definition_id=definition.id, owner=owner)
    return jsonify(definition.to_dict()), 201


@recurring_bp.route("/definitions/<int:definition_id>", methods=["PUT", "PATCH"])
def update_definition_route(definition_id):
    definition = db.session.get(RecurringTask, definition_id)
    if definition is None:
        return jsonify({"error": f"Recurring task {definition_id} not found"}), 404
    data = dict(request.get_json(silent=True) or {})
    data.pop("owner", None)
    try:
        update_definition(definition, data, _timezone())
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error("Error updating recurring task", definition_id=definition_id, error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    return jsonify(definition.to_dict()), 200


@recurring_bp.route("/definitions/<int:definition_id>/toggle", methods=["POST"])
def toggle_definition(definition_id):
    """Flip is_active, or set it explicitly with {"is_active": bool}."""
    definition = db.session.get(RecurringTask, definition_id)
    if definition is None:
        return jsonify({"error": f"Recurring task {definition_id} not found"}), 404
    data = request.get_json(silent=True) or {}
    is_active = data.get("is_active", not definition.is_active)
    if not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be true or false"}), 400
    set_active(definition, is_active)
    logger.info("Recurring task toggled", definition_id=definition_id, is_active=definition.is_active)
    return jsonify(definition.to_dict()), 200
