"""
Time-boxed batch creation of CRM deals.

One `process` call is one bounded round: rows are created one after the
other with a fixed delay between them, and the round stops before starting
a row once the wall-clock budget is spent. The caller resumes with the
rows it has not seen results for.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from taskbridge.crm.errors import CrmError
from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

STATUS_PARTIAL = "partial"
STATUS_COMPLETED = "completed"


@dataclass
class BatchItem:
    """A deal ready to send: natural key plus CRM-shaped fields."""
    order_id: str
    fields: Dict[str, Any]


@dataclass
class BatchResult:
    status: str
    processed: int
    total: int
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return self.status == STATUS_PARTIAL

    def to_dict(self):
        body = {
            "status": self.status,
            "processed": self.processed,
            "total": self.total,
            "results": [
                {"orderId": r["order_id"], **{k: v for k, v in r.items() if k != "order_id"}}
                for r in self.results
            ],
        }
        if self.is_partial:
            body["message"] = "Time limit reached. Please resume for remaining items."
        return body


class BatchProcessor:
    """
    Creates deals sequentially under a time budget.

    `clock` and `sleep` are injectable so rounds can be simulated without
    waiting.
    """

    def __init__(self, client, time_budget_seconds: float = 50.0, inter_row_delay: float = 0.5,
                 comment_text: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.time_budget_seconds = time_budget_seconds
        self.inter_row_delay = inter_row_delay
        self.comment_text = comment_text
        self.clock = clock
        self.sleep = sleep

    def _create_one(self, item: BatchItem) -> Dict[str, Any]:
        try:
            remote_id = self.client.create(item.fields, entity="deal")
        except CrmError as e:
            logger.warning("Deal creation failed", order_id=item.order_id, error=e.detail or str(e))
            return {"order_id": item.order_id, "success": False, "error": e.detail or str(e)}
        except Exception as e:
            logger.error("Deal creation failed", order_id=item.order_id, error=str(e), exc_info=True)
            return {"order_id": item.order_id, "success": False, "error": str(e)}

        if self.comment_text:
            try:
                self.client.add_comment(remote_id, self.comment_text)
            except Exception as e:
                # the deal exists; a missing comment does not fail the row
                logger.warning("Failed to add operator instructions", order_id=item.order_id,
                               remote_id=remote_id, error=str(e))
        return {"order_id": item.order_id, "success": True, "id": remote_id}

    def process(self, items: Sequence[BatchItem]) -> BatchResult:
        started = self.clock()
        results = []
        total = len(items)

        for index, item in enumerate(items):
            if self.clock() - started > self.time_budget_seconds:
                logger.info("Batch time budget reached", processed=len(results), total=total)
                return BatchResult(STATUS_PARTIAL, len(results), total, results)

            results.append(self._create_one(item))

            if index < total - 1 and self.inter_row_delay > 0:
                self.sleep(self.inter_row_delay)

        return BatchResult(STATUS_COMPLETED, len(results), total, results)
