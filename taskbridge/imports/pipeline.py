"""
Bulk import of return reports as CRM deals.

    rows -> dedup pass (one lookup per row) -> normalize -> batch rounds

Each batch round is time-boxed; the pipeline keeps a cursor into the queued
rows and re-invokes the batch processor on the remainder until every row
has a result. Nothing is checkpointed server-side: a caller that stops
early resumes by running the pipeline again on the remaining rows, and the
dedup pass skips whatever was already created.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from taskbridge.imports.batch import BatchItem, BatchProcessor
from taskbridge.imports.normalize import normalize_row, order_id_of
from taskbridge.logging_config import RunContext, get_logger
from taskbridge.services.import_log_service import (
    finish_import_operation,
    safe_log_import_event,
    start_import_operation,
)

logger = get_logger(__name__)


@dataclass
class ImportRunState:
    total_rows: int
    cursor: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0

    def to_dict(self):
        return {
            "total_rows": self.total_rows,
            "cursor": self.cursor,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
        }


@dataclass
class ImportSummary:
    state: ImportRunState
    lines: List[str] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)
    rounds: int = 0
    operation_id: Optional[str] = None

    @property
    def created(self):
        return self.state.success_count

    @property
    def skipped(self):
        return self.state.skipped_count

    @property
    def errors(self):
        return self.state.error_count

    def to_dict(self):
        return {
            "operation_id": self.operation_id,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "rounds": self.rounds,
            "state": self.state.to_dict(),
            "results": self.results,
            "lines": self.lines,
        }


class BulkImportPipeline:

    def __init__(self, time_budget_seconds=50.0, inter_row_delay=0.5, deadline_days=15,
                 currency="BRL", assigned_by_id=1, comment_text=None,
                 clock=None, sleep=None, audit=True):
        self.time_budget_seconds = time_budget_seconds
        self.inter_row_delay = inter_row_delay
        self.deadline_days = deadline_days
        self.currency = currency
        self.assigned_by_id = assigned_by_id
        self.comment_text = comment_text
        self.clock = clock
        self.sleep = sleep
        self.audit = audit

    @classmethod
    def from_config(cls, config, **overrides):
        """Pipeline configured from a Flask config mapping."""
        options = dict(
            time_budget_seconds=config.get("IMPORT_TIME_BUDGET_SECONDS", 50.0),
            inter_row_delay=config.get("IMPORT_ROW_DELAY_SECONDS", 0.5),
            deadline_days=config.get("IMPORT_DEADLINE_DAYS", 15),
            currency=config.get("IMPORT_CURRENCY", "BRL"),
            assigned_by_id=config.get("IMPORT_ASSIGNED_BY_ID", 1),
            comment_text=config.get("IMPORT_OPERATOR_INSTRUCTIONS"),
        )
        options.update(overrides)
        return cls(**options)

    def make_processor(self, client) -> BatchProcessor:
        kwargs = {}
        if self.clock is not None:
            kwargs["clock"] = self.clock
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return BatchProcessor(
            client,
            time_budget_seconds=self.time_budget_seconds,
            inter_row_delay=self.inter_row_delay,
            comment_text=self.comment_text,
            **kwargs,
        )

    def _log(self, summary, level, message, **kwargs):
        summary.lines.append(message)
        if self.audit and summary.operation_id:
            safe_log_import_event(summary.operation_id, level, message, **kwargs)

    def dedup(self, rows: Sequence[Dict[str, Any]], client, summary: ImportSummary) -> List[Dict[str, Any]]:
        """
        Keep only rows whose order id is new to this file and to the CRM.

        A failed lookup counts as an error for the row; it is not created,
        so a retry cannot produce a duplicate.
        """
        state = summary.state
        seen = set()
        queued = []
        for row in rows:
            key = order_id_of(row)
            if not key:
                state.skipped_count += 1
                self._log(summary, "WARNING", "Row skipped: no order id")
                continue
            if key in seen:
                state.skipped_count += 1
                self._log(summary, "INFO", f"[{key}] skipped: repeated in file", natural_key=key)
                continue
            seen.add(key)

            try:
                existing_id = client.find_by_natural_key(key, entity="deal")
            except Exception as e:
                state.error_count += 1
                detail = getattr(e, "detail", None) or str(e)
                self._log(summary, "ERROR", f"[{key}] lookup failed: {detail}", natural_key=key, error=detail)
                continue

            if existing_id:
                state.skipped_count += 1
                self._log(summary, "INFO", f"[{key}] skipped: already exists as {existing_id}",
                          natural_key=key, remote_id=existing_id)
                continue
            queued.append(row)
        return queued

    def normalize(self, rows: Sequence[Dict[str, Any]], summary: ImportSummary) -> List[BatchItem]:
        items = []
        for row in rows:
            key = order_id_of(row)
            try:
                payload = normalize_row(
                    row,
                    currency=self.currency,
                    assigned_by_id=self.assigned_by_id,
                    deadline_days=self.deadline_days,
                )
                items.append(BatchItem(order_id=payload.order_id, fields=payload.to_remote()))
            except Exception as e:
                summary.state.error_count += 1
                self._log(summary, "ERROR", f"[{key}] could not be normalized: {e}", natural_key=key, error=str(e))
        return items

    def dispatch(self, items: List[BatchItem], client, summary: ImportSummary) -> None:
        """Run batch rounds until every queued item has a result."""
        state = summary.state
        processor = self.make_processor(client)
        cursor = 0
        while cursor < len(items):
            result = processor.process(items[cursor:])
            summary.rounds += 1
            if result.processed == 0:
                logger.warning("Batch round made no progress, stopping", cursor=cursor, remaining=len(items) - cursor)
                break

            for row_result in result.results:
                summary.results.append(row_result)
                key = row_result["order_id"]
                if row_result["success"]:
                    state.success_count += 1
                    self._log(summary, "INFO", f"[{key}] created id {row_result['id']}",
                              natural_key=key, remote_id=row_result["id"])
                else:
                    state.error_count += 1
                    self._log(summary, "ERROR", f"[{key}] error: {row_result['error']}",
                              natural_key=key, error=row_result["error"])

            cursor += result.processed
            logger.info("Batch round finished", round=summary.rounds, status=result.status,
                        cursor=cursor, total=len(items))

    def run(self, rows: Sequence[Dict[str, Any]], client, owner: Optional[str] = None,
            source_name: Optional[str] = None) -> ImportSummary:
        rows = list(rows)
        state = ImportRunState(total_rows=len(rows))

        with RunContext("bulk_import") as ctx:
            summary = ImportSummary(state=state, operation_id=ctx.operation_id)
            operation = None
            if self.audit:
                operation = start_import_operation(ctx.operation_id, owner, source_name, len(rows))

            try:
                queued = self.dedup(rows, client, summary)
                items = self.normalize(queued, summary)
                self.dispatch(items, client, summary)
            except Exception as e:
                if self.audit:
                    finish_import_operation(operation, summary, error=str(e))
                raise

            state.cursor = state.success_count + state.error_count + state.skipped_count
            if self.audit:
                finish_import_operation(operation, summary)

            logger.info(
                "Bulk import finished",
                operation_id=ctx.operation_id,
                created=summary.created,
                skipped=summary.skipped,
                errors=summary.errors,
                rounds=summary.rounds,
            )
        return summary
