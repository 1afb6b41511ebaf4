"""
API routes for bulk importing return reports into the CRM.
"""
from flask import current_app, jsonify, request

from taskbridge.crm import CrmClient, get_crm_client
from taskbridge.crm.errors import UnknownFieldError
from taskbridge.crm.fields import DealPayload
from taskbridge.imports import imports_bp, logger
from taskbridge.imports.batch import BatchItem
from taskbridge.imports.pipeline import BulkImportPipeline
from taskbridge.imports.row_source import read_rows
from taskbridge.models import ImportLog, ImportOperation


@imports_bp.route("", methods=["POST"])
def import_file():
    """
    Import an uploaded report (multipart field "file", optional "owner").

    Runs dedup, normalization and as many batch rounds as needed, then
    returns the created/skipped/error counts with per-row detail.
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "No file uploaded"}), 400
    owner = request.form.get("owner") or request.args.get("owner")

    try:
        rows = read_rows(upload.read(), upload.filename)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    client = get_crm_client(owner)
    if client is None:
        return jsonify({"error": "CRM webhook is not configured"}), 400

    try:
        summary = BulkImportPipeline.from_config(current_app.config).run(
            rows, client, owner=owner, source_name=upload.filename
        )
    except Exception as e:
        logger.error("Error in POST /imports", filename=upload.filename, error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    finally:
        client.close()

    return jsonify(summary.to_dict()), 200


@imports_bp.route("/batch", methods=["POST"])
def import_batch():
    """
    Run one time-boxed round over already-normalized items.

    Body: {"items": [{"orderId", "fields"}], "webhookUrl"?, "operatorInstructions"?, "owner"?}.
    Returns {"status": "partial"|"completed", "processed", "total", "results"};
    the caller resumes with items[processed:].
    """
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list):
        return jsonify({"error": "Items must be an array"}), 400

    try:
        batch = [
            BatchItem(
                order_id=str(item.get("orderId") or ""),
                fields=DealPayload(str(item.get("orderId") or ""), item.get("fields") or {}).to_remote(),
            )
            for item in items
        ]
    except UnknownFieldError as e:
        return jsonify({"error": f"Unknown deal field: {e.args[0]}"}), 400
    except (AttributeError, TypeError):
        return jsonify({"error": "Each item must be an object with orderId and fields"}), 400

    if data.get("webhookUrl"):
        try:
            client = CrmClient(
                data["webhookUrl"],
                timeout=current_app.config.get("CRM_REQUEST_TIMEOUT", 30.0),
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
    else:
        client = get_crm_client(data.get("owner"))
    if client is None:
        return jsonify({"error": "webhookUrl is required"}), 400

    pipeline = BulkImportPipeline.from_config(current_app.config)
    if "operatorInstructions" in data:
        pipeline.comment_text = data["operatorInstructions"]
    try:
        result = pipeline.make_processor(client).process(batch)
    finally:
        client.close()
    return jsonify(result.to_dict()), 200


@imports_bp.route("/<operation_id>", methods=["GET"])
def get_import(operation_id):
    """Audit record of one import session and its log lines."""
    operation = ImportOperation.query.filter_by(operation_id=operation_id).first()
    if operation is None:
        return jsonify({"error": f"Import {operation_id} not found"}), 404
    logs = (
        ImportLog.query.filter_by(operation_id=operation_id)
        .order_by(ImportLog.timestamp, ImportLog.id)
        .all()
    )
    return jsonify({
        "operation": operation.to_dict(),
        "logs": [log.to_dict() for log in logs],
    }), 200
