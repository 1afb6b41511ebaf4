import base64

import requests
from requests.exceptions import RequestException

from taskbridge.crm.errors import CrmError
from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

# REST method names per remote entity
ENTITY_METHODS = {
    "task": {
        "create": "tasks.task.add",
        "update": "tasks.task.update",
        "delete": "tasks.task.delete",
        "list": "tasks.task.list",
    },
    "deal": {
        "create": "crm.deal.add",
        "update": "crm.deal.update",
        "delete": "crm.deal.delete",
        "list": "crm.deal.list",
    },
}


def normalize_webhook_url(webhook_url):
    """
    Reduce a pasted webhook URL to its base.

    Users often paste the URL of a specific method, e.g.
    https://portal/rest/1/abc/tasks.task.add.json; calls need
    https://portal/rest/1/abc. Method names are the only dotted segments
    after /rest/.
    """
    if not webhook_url:
        raise ValueError("CRM webhook URL is not configured")
    url = webhook_url.strip().rstrip("/")
    head, sep, tail = url.partition("/rest/")
    if not sep:
        return url
    segments = [s for s in tail.split("/") if s]
    while segments and "." in segments[-1]:
        segments.pop()
    return head + sep + "/".join(segments)


class CrmClient:
    """CRM REST connection layer using a requests session.

    Every call POSTs JSON to `<base>/<method>.json`. Failures surface as
    CrmError carrying the remote error description; nothing is retried here.
    """

    def __init__(self, webhook_url, timeout=30.0, disk_folder_id=None, session=None):
        self.base_url = normalize_webhook_url(webhook_url)
        self.timeout = timeout
        self.disk_folder_id = disk_folder_id
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def call(self, method: str, payload: dict):
        """POST one REST method and return the decoded `result` value."""
        url = f"{self.base_url}/{method}.json"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except RequestException as e:
            raise CrmError(f"{method} request failed", detail=str(e), method=method) from e

        try:
            body = response.json() if response.text else {}
        except ValueError:
            body = {"error": "invalid_json", "error_description": response.text[:500]}

        if not response.ok or (isinstance(body, dict) and body.get("error")):
            detail = None
            if isinstance(body, dict):
                detail = body.get("error_description") or body.get("error")
            raise CrmError(
                f"{method} returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=detail or response.text[:500],
                method=method,
            )

        logger.debug("CRM call succeeded", method=method, status_code=response.status_code)
        return body.get("result") if isinstance(body, dict) else body

    @staticmethod
    def _extract_id(result):
        # tasks.task.add -> {"task": {"id": ..}}; crm.deal.add -> 123
        if isinstance(result, dict):
            if isinstance(result.get("task"), dict):
                result = result["task"].get("id")
            else:
                result = result.get("id") or result.get("ID")
        if result in (None, "", False):
            return None
        return str(result)

    def _method(self, entity, operation):
        try:
            return ENTITY_METHODS[entity][operation]
        except KeyError:
            raise ValueError(f"Unsupported CRM operation {entity}/{operation}") from None

    def find_by_natural_key(self, key, entity="deal"):
        """Return the id of the first record whose title equals `key`, or None."""
        result = self.call(
            self._method(entity, "list"),
            {"filter": {"=TITLE": key}, "select": ["ID", "TITLE"]},
        )
        if isinstance(result, dict) and "tasks" in result:
            result = result["tasks"]
        if not result:
            return None
        first = result[0]
        return self._extract_id(first)

    def create(self, fields, entity="task"):
        """Create a record and return its remote id."""
        result = self.call(self._method(entity, "create"), {"fields": fields})
        remote_id = self._extract_id(result)
        if remote_id is None:
            raise CrmError(f"{entity} create returned no id", detail=str(result), method=self._method(entity, "create"))
        return remote_id

    def update(self, remote_id, fields, entity="task"):
        key = "taskId" if entity == "task" else "id"
        self.call(self._method(entity, "update"), {key: remote_id, "fields": fields})
        return True

    def delete(self, remote_id, entity="task"):
        key = "taskId" if entity == "task" else "id"
        self.call(self._method(entity, "delete"), {key: remote_id})
        return True

    def upload_file(self, name, content: bytes):
        """Upload bytes to the configured disk folder and return the file id."""
        if not self.disk_folder_id:
            raise CrmError("No CRM disk folder configured for uploads", method="disk.folder.uploadfile")
        result = self.call(
            "disk.folder.uploadfile",
            {
                "id": self.disk_folder_id,
                "data": {"NAME": name},
                "fileContent": [name, base64.b64encode(content).decode("ascii")],
                "generateUniqueName": True,
            },
        )
        file_id = self._extract_id(result)
        if file_id is None:
            raise CrmError("Upload returned no file id", detail=str(result), method="disk.folder.uploadfile")
        return file_id

    def delete_file(self, file_id):
        self.call("disk.file.delete", {"id": file_id})
        return True

    def add_comment(self, remote_id, text, entity_type="deal"):
        self.call(
            "crm.timeline.comment.add",
            {"fields": {"ENTITY_ID": remote_id, "ENTITY_TYPE": entity_type, "COMMENT": text}},
        )
        return True

    def add_checklist_item(self, task_id, title, done=False):
        self.call(
            "task.checklistitem.add",
            {"TASKID": task_id, "FIELDS": {"TITLE": title, "IS_COMPLETE": "Y" if done else "N"}},
        )
        return True

    def list_users(self):
        """Portal users as {id, name, work_position}, for picking a responsible person."""
        result = self.call("user.get", {}) or []
        return [
            {
                "id": user.get("ID"),
                "name": f"{user.get('NAME') or ''} {user.get('LAST_NAME') or ''}".strip(),
                "work_position": user.get("WORK_POSITION"),
            }
            for user in result
        ]

    def close(self):
        self.session.close()
