"""
API routes for tasks and their attachments.
"""
from flask import jsonify, request

from taskbridge.models import Task, TaskOrigin, db
from taskbridge.storage.blob_store import get_blob_store
from taskbridge.tasks import tasks_bp, logger
from taskbridge.tasks.service import create_task, delete_task, store_attachment, update_task


def _get_task_or_404(task_id):
    task = db.session.get(Task, task_id)
    if task is None:
        return None, (jsonify({"error": f"Task {task_id} not found"}), 404)
    return task, None


@tasks_bp.route("", methods=["GET"])
def list_tasks():
    owner = request.args.get("owner")
    query = Task.query
    if owner:
        query = query.filter(Task.owner == owner)
    tasks = query.order_by(Task.created_at.desc(), Task.id.desc()).all()
    return jsonify({
        "tasks": [task.to_dict() for task in tasks],
        "total_count": len(tasks),
    }), 200


@tasks_bp.route("", methods=["POST"])
def create_task_route():
    data = request.get_json(silent=True) or {}
    try:
        task = create_task(
            data.get("owner"),
            data.get("title"),
            description=data.get("description"),
            status=data.get("status") or "PENDING",
            origin=TaskOrigin.MANUAL,
            priority=data.get("priority", False),
            deadline=data.get("deadline"),
            checklist=data.get("checklist"),
            attachments=data.get("attachments"),
            responsible_id=data.get("responsible_id"),
        )
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error("Error in POST /tasks", error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    # re-read: the relay may have written back external_id
    db.session.refresh(task)
    return jsonify(task.to_dict()), 201


@tasks_bp.route("/<int:task_id>", methods=["GET"])
def get_task(task_id):
    task, error = _get_task_or_404(task_id)
    if error:
        return error
    return jsonify(task.to_dict()), 200


@tasks_bp.route("/<int:task_id>", methods=["PUT", "PATCH"])
def update_task_route(task_id):
    task, error = _get_task_or_404(task_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    try:
        update_task(task, data)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error("Error in PUT /tasks", task_id=task_id, error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    db.session.refresh(task)
    return jsonify(task.to_dict()), 200


@tasks_bp.route("/<int:task_id>", methods=["DELETE"])
def delete_task_route(task_id):
    task, error = _get_task_or_404(task_id)
    if error:
        return error
    try:
        result = delete_task(task)
    except Exception as e:
        db.session.rollback()
        logger.error("Error in DELETE /tasks", task_id=task_id, error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    return jsonify({
        "deleted": task_id,
        "relay": result.to_dict() if result else None,
    }), 200


@tasks_bp.route("/<int:task_id>/attachments", methods=["POST"])
def upload_attachment(task_id):
    """Store an uploaded file and append it to the task's attachments."""
    task, error = _get_task_or_404(task_id)
    if error:
        return error
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "No file uploaded"}), 400

    attachment = store_attachment(
        get_blob_store(), upload.filename, upload.read(), content_type=upload.mimetype
    )
    try:
        update_task(task, {"attachments": list(task.attachments or []) + [attachment]})
    except Exception as e:
        db.session.rollback()
        get_blob_store().delete(attachment["url"])
        logger.error("Error attaching file", task_id=task_id, error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500
    db.session.refresh(task)
    return jsonify(task.to_dict()), 201
