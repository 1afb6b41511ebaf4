"""
Shared fixtures: an app on in-memory SQLite and a fake CRM client that
records every call instead of talking HTTP.
"""
import pytest

from taskbridge import create_app
from taskbridge.crm.errors import CrmError
from taskbridge.models import db
from taskbridge.storage.blob_store import LocalBlobStore, reset_blob_store


@pytest.fixture
def app(tmp_path):
    """Create Flask application for testing."""
    reset_blob_store()
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "RELAY_ENABLED": False,
        "CRM_WEBHOOK_URL": None,
        "BLOB_STORE_DIR": str(tmp_path / "blobs"),
        "LOG_LEVEL": "WARNING",
        "IMPORT_ROW_DELAY_SECONDS": 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    reset_blob_store()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "store")


class FakeCrm:
    """In-memory stand-in for CrmClient."""

    def __init__(self):
        self.calls = []
        self.created = {}
        self.existing_titles = {}
        self.files = {}
        self.fail_on = {}
        self.users = []
        self.closed = False
        self._next_id = 100

    def _check(self, method, *args):
        self.calls.append((method,) + args)
        failure = self.fail_on.get(method)
        if failure is not None:
            if callable(failure):
                failure = failure(*args)
            if failure:
                raise CrmError(f"{method} returned HTTP 400", status_code=400, detail=str(failure), method=method)

    def _new_id(self):
        self._next_id += 1
        return str(self._next_id)

    def methods(self):
        return [call[0] for call in self.calls]

    def find_by_natural_key(self, key, entity="deal"):
        self._check("find_by_natural_key", key)
        return self.existing_titles.get(key)

    def create(self, fields, entity="task"):
        self._check("create", fields)
        remote_id = self._new_id()
        self.created[remote_id] = {"entity": entity, "fields": fields}
        if "TITLE" in fields:
            self.existing_titles.setdefault(fields["TITLE"], remote_id)
        return remote_id

    def update(self, remote_id, fields, entity="task"):
        self._check("update", remote_id, fields)
        return True

    def delete(self, remote_id, entity="task"):
        self._check("delete", remote_id)
        return True

    def upload_file(self, name, content):
        self._check("upload_file", name)
        file_id = self._new_id()
        self.files[file_id] = (name, content)
        return file_id

    def delete_file(self, file_id):
        self._check("delete_file", file_id)
        return True

    def add_comment(self, remote_id, text, entity_type="deal"):
        self._check("add_comment", remote_id)
        return True

    def add_checklist_item(self, task_id, title, done=False):
        self._check("add_checklist_item", task_id, title, done)
        return True

    def list_users(self):
        self._check("list_users")
        return list(self.users)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_crm():
    return FakeCrm()


@pytest.fixture
def fake_crm_factory():
    return FakeCrm
