"""
Tests for CrmClient request building and error handling (requests session mocked).
"""
from unittest.mock import Mock

import pytest
import requests

from taskbridge.crm.client import CrmClient, normalize_webhook_url
from taskbridge.crm.errors import CrmError, UnknownFieldError
from taskbridge.crm.fields import DealPayload, TaskPayload, translate, TASK_FIELD_MAP

BASE = "https://portal.example.com/rest/1/abc123"


def make_response(body, status=200):
    response = Mock()
    response.status_code = status
    response.ok = status < 400
    response.text = "x"
    response.json.return_value = body
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session, headers={})


@pytest.fixture
def crm(session):
    return CrmClient(BASE, timeout=5, disk_folder_id="42", session=session)


@pytest.mark.parametrize("url", [
    BASE,
    BASE + "/",
    BASE + "/tasks.task.add.json",
    BASE + "/user.get",
])
def test_normalize_webhook_url(url):
    assert normalize_webhook_url(url) == BASE


def test_normalize_webhook_url_requires_value():
    with pytest.raises(ValueError):
        normalize_webhook_url("")


def test_create_task_returns_nested_id(crm, session):
    session.post.return_value = make_response({"result": {"task": {"id": 981}}})

    assert crm.create({"TITLE": "x"}, entity="task") == "981"
    url = session.post.call_args.args[0]
    assert url == BASE + "/tasks.task.add.json"
    assert session.post.call_args.kwargs["json"] == {"fields": {"TITLE": "x"}}
    assert session.post.call_args.kwargs["timeout"] == 5


def test_create_deal_returns_scalar_id(crm, session):
    session.post.return_value = make_response({"result": 17})
    assert crm.create({"TITLE": "250601ABC"}, entity="deal") == "17"
    assert session.post.call_args.args[0] == BASE + "/crm.deal.add.json"


def test_error_payload_raises_with_remote_detail(crm, session):
    session.post.return_value = make_response(
        {"error": "ACCESS_DENIED", "error_description": "Access denied"}, status=401
    )

    with pytest.raises(CrmError) as excinfo:
        crm.create({"TITLE": "x"})

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Access denied"
    assert "Access denied" in str(excinfo.value)


def test_transport_error_becomes_crm_error(crm, session):
    session.post.side_effect = requests.ConnectionError("connection reset")

    with pytest.raises(CrmError) as excinfo:
        crm.delete("5")
    assert "connection reset" in excinfo.value.detail


def test_find_by_natural_key_uses_exact_title_filter(crm, session):
    session.post.return_value = make_response({"result": [{"ID": "33", "TITLE": "250601ABC"}]})

    assert crm.find_by_natural_key("250601ABC") == "33"
    payload = session.post.call_args.kwargs["json"]
    assert payload["filter"] == {"=TITLE": "250601ABC"}


def test_find_by_natural_key_none_when_empty(crm, session):
    session.post.return_value = make_response({"result": []})
    assert crm.find_by_natural_key("nope") is None


def test_task_update_and_delete_use_task_id_key(crm, session):
    session.post.return_value = make_response({"result": True})

    crm.update("555", {"TITLE": "y"})
    assert session.post.call_args.kwargs["json"] == {"taskId": "555", "fields": {"TITLE": "y"}}
    crm.delete("555")
    assert session.post.call_args.args[0] == BASE + "/tasks.task.delete.json"


def test_upload_file_requires_folder(session):
    crm = CrmClient(BASE, session=session)
    with pytest.raises(CrmError):
        crm.upload_file("a.txt", b"abc")
    session.post.assert_not_called()


def test_upload_file_sends_base64(crm, session):
    session.post.return_value = make_response({"result": {"ID": 900}})

    assert crm.upload_file("a.txt", b"abc") == "900"
    payload = session.post.call_args.kwargs["json"]
    assert payload["id"] == "42"
    assert payload["fileContent"] == ["a.txt", "YWJj"]


def test_list_users_maps_name_and_position(crm, session):
    session.post.return_value = make_response({"result": [
        {"ID": "1", "NAME": "Ana", "LAST_NAME": "Souza", "WORK_POSITION": "Support"},
        {"ID": "7", "NAME": "Bruno", "LAST_NAME": "", "WORK_POSITION": None},
    ]})

    users = crm.list_users()

    assert session.post.call_args.args[0] == BASE + "/user.get.json"
    assert users == [
        {"id": "1", "name": "Ana Souza", "work_position": "Support"},
        {"id": "7", "name": "Bruno", "work_position": None},
    ]


def test_close_closes_session(crm, session):
    crm.close()
    session.close.assert_called_once()


def test_task_payload_translation():
    record = {"title": "T", "description": None, "priority": False, "status": "COMPLETED", "responsible_id": ""}
    remote = TaskPayload.from_record(record, deadline=None, include_status=True, remote_file_ids=["5"]).to_remote()

    assert remote == {
        "TITLE": "T",
        "DESCRIPTION": "",
        "PRIORITY": "1",
        "DEADLINE": None,
        "RESPONSIBLE_ID": None,
        "STATUS": 5,
        "UF_TASK_WEBDAV_FILES": ["n5"],
    }


def test_unknown_field_is_rejected():
    with pytest.raises(UnknownFieldError):
        translate(TASK_FIELD_MAP, {"titel": "typo"})
    with pytest.raises(UnknownFieldError):
        DealPayload("1", {"TITLE": "already remote"}).to_remote()
