"""
Tests for the time-boxed BatchProcessor, with a fake clock so no real
time passes.
"""
from unittest.mock import Mock

import pytest

from taskbridge.imports.batch import BatchItem, BatchProcessor


class FakeClock:
    """Time only moves when the processor sleeps."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def items(n):
    return [BatchItem(order_id=f"ORD{i}", fields={"TITLE": f"ORD{i}"}) for i in range(n)]


@pytest.fixture
def clock():
    return FakeClock()


def test_completes_within_budget(fake_crm, clock):
    processor = BatchProcessor(fake_crm, time_budget_seconds=50, inter_row_delay=0.5,
                               clock=clock, sleep=clock.sleep)

    result = processor.process(items(3))

    assert result.status == "completed"
    assert result.processed == 3
    assert [r["order_id"] for r in result.results] == ["ORD0", "ORD1", "ORD2"]
    assert all(r["success"] for r in result.results)
    # delay only between rows
    assert clock.now == pytest.approx(1.0)


def test_stops_when_budget_is_spent(fake_crm, clock):
    processor = BatchProcessor(fake_crm, time_budget_seconds=1.0, inter_row_delay=0.5,
                               clock=clock, sleep=clock.sleep)

    result = processor.process(items(10))

    # rows start at t=0, 0.5, 1.0; at 1.5 the budget check fails
    assert result.status == "partial"
    assert result.processed == 3
    assert result.total == 10
    body = result.to_dict()
    assert body["message"].startswith("Time limit reached")
    assert body["results"][0]["orderId"] == "ORD0"
    assert body["results"][0]["success"] is True


def test_row_failure_is_reported_and_processing_continues(fake_crm, clock):
    fake_crm.fail_on["create"] = lambda fields: "Invalid field value" if fields["TITLE"] == "ORD1" else None
    processor = BatchProcessor(fake_crm, inter_row_delay=0, clock=clock, sleep=clock.sleep)

    result = processor.process(items(3))

    assert result.status == "completed"
    assert [r["success"] for r in result.results] == [True, False, True]
    assert result.results[1]["error"] == "Invalid field value"


def test_comment_added_to_each_created_deal(fake_crm, clock):
    processor = BatchProcessor(fake_crm, inter_row_delay=0, comment_text="Check the package",
                               clock=clock, sleep=clock.sleep)

    processor.process(items(2))

    assert fake_crm.methods() == ["create", "add_comment", "create", "add_comment"]


def test_comment_failure_does_not_fail_the_row(fake_crm, clock):
    fake_crm.fail_on["add_comment"] = "timeline disabled"
    processor = BatchProcessor(fake_crm, inter_row_delay=0, comment_text="x", clock=clock, sleep=clock.sleep)

    result = processor.process(items(1))

    assert result.results[0]["success"] is True


def test_unexpected_exception_is_a_row_error(clock):
    client = Mock()
    client.create.side_effect = ValueError("bad json")
    processor = BatchProcessor(client, inter_row_delay=0, clock=clock, sleep=clock.sleep)

    result = processor.process(items(2))

    assert result.processed == 2
    assert [r["error"] for r in result.results] == ["bad json", "bad json"]


def test_empty_batch_is_completed(fake_crm, clock):
    result = BatchProcessor(fake_crm, clock=clock, sleep=clock.sleep).process([])
    assert result.status == "completed"
    assert result.processed == 0
