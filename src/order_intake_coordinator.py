"""
Order Intake – Batch Coordinator
================================

Runs one submission batch against a manager tab:

1. ensure the tab exists
2. ensure the header row (once per batch)
3. upload all attachments concurrently, results restored to submission order
4. build one row per order in header order
5. resolve one write range
6. write every row in a single call

Steps 2–6 hold a per-tab asyncio lock (SERIALIZE_TAB_WRITES) so two batches
for the same manager in this process cannot compute overlapping ranges.
Separate processes writing the same tab can still race.

Blocking gspread / Drive calls run in worker threads via asyncio.to_thread.
"""
import asyncio
import contextlib
import re
import time
from typing import Dict, List, Optional, Sequence, Tuple

import config
from order_intake_contract import (
    AttachmentRef,
    AttachmentUploadFailure,
    InvalidOrderPayload,
    OrderAttachment,
    OrderIntakeError,
    RowWriteFailure,
    RowWriteRange,
    SheetTarget,
    WriteSummary,
)
from sheets.header_registry import HeaderStrategy, build_header_strategy
from sheets.insertion_resolver import InsertionPolicy, build_insertion_policy
from sheets.row_mapper import OrderRecord, RowMapper, make_order_record, now_in_timezone
from sheets.sheet_provisioner import SheetProvisioner
from utils.logger import get_logger


class TabLockRegistry:
    """One asyncio.Lock per (spreadsheet id, tab name)."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, target: SheetTarget) -> asyncio.Lock:
        return self._locks.setdefault(target.key, asyncio.Lock())


# Process-wide: coordinators are rebuilt when credentials change, locks are not
_tab_locks = TabLockRegistry()

_UPDATED_RANGE_ROW = re.compile(r"![A-Z]+(\d+)")


class BatchCoordinator:
    """Sequences provisioning, headers, uploads, mapping and the row write."""

    def __init__(
        self,
        store,
        attachment_store,
        header_strategy: HeaderStrategy,
        insertion_policy: InsertionPolicy,
        row_mapper: RowMapper,
        canonical_schema: Sequence[str],
        fixed_columns: Sequence[str],
        record_format: str = 'keyed',
        drive_folder_id: Optional[str] = None,
        timezone: str = 'Asia/Seoul',
        attachment_name_column: str = '수취인명',
        serialize_tab_writes: bool = True,
        tab_locks: Optional[TabLockRegistry] = None,
    ):
        self.store = store
        self.attachment_store = attachment_store
        self.provisioner = SheetProvisioner(store)
        self.header_strategy = header_strategy
        self.insertion_policy = insertion_policy
        self.row_mapper = row_mapper
        self.canonical_schema = list(canonical_schema)
        self.fixed_columns = list(fixed_columns)
        self.record_format = record_format
        self.drive_folder_id = drive_folder_id or None
        self.timezone = timezone
        self.attachment_name_column = attachment_name_column
        self.serialize_tab_writes = serialize_tab_writes
        self.tab_locks = tab_locks or _tab_locks

    @classmethod
    def from_config(cls, store, attachment_store) -> "BatchCoordinator":
        """Wire strategies and schema from the config module."""
        return cls(
            store=store,
            attachment_store=attachment_store,
            header_strategy=build_header_strategy(config.HEADER_STRATEGY, store, config.RESERVED_COLUMNS),
            insertion_policy=build_insertion_policy(
                config.INSERTION_POLICY,
                store,
                require_fit=config.GAP_REUSE_REQUIRE_FIT,
                use_native_append=config.APPEND_USE_NATIVE,
            ),
            row_mapper=RowMapper(config.ATTACHMENT_COLUMN, config.TIMESTAMP_COLUMN, config.TIMESTAMP_LOCALE),
            canonical_schema=config.CANONICAL_COLUMNS,
            fixed_columns=config.ORDER_FIXED_COLUMNS,
            record_format=config.ORDER_RECORD_FORMAT,
            drive_folder_id=config.DRIVE_FOLDER_ID,
            timezone=config.TIMESTAMP_TIMEZONE,
            attachment_name_column=config.ATTACHMENT_NAME_COLUMN,
            serialize_tab_writes=config.SERIALIZE_TAB_WRITES,
        )

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def submit_batch(
        self,
        target: SheetTarget,
        payloads: Sequence,
        attachments: Optional[Sequence[Optional[OrderAttachment]]] = None,
    ) -> WriteSummary:
        """
        Write one row per order payload into ``target``.

        Args:
            target: Workbook + manager tab.
            payloads: Order payloads in the configured record format.
            attachments: Index-aligned with ``payloads``; entries may be None,
                         the list may be shorter than ``payloads``.

        Returns:
            WriteSummary with the written row span and attachment links.

        Raises:
            MissingSelector, InvalidOrderPayload, HeaderWriteFailure,
            AttachmentUploadFailure, RowWriteFailure
        """
        target.validate()
        records = [
            make_order_record(payload, self.record_format, self.fixed_columns)
            for payload in payloads
        ]
        aligned = self._align_attachments(records, attachments)

        logger = get_logger()
        logger.log_batch_start(target.tab_name, len(records), sum(1 for a in aligned if a is not None))

        lock = self.tab_locks.lock_for(target) if self.serialize_tab_writes else contextlib.nullcontext()
        started = time.time()
        async with lock:
            summary = await self._run_batch(target, records, aligned)

        logger.log_batch_complete(target.tab_name, summary.row_count, summary.start_row, time.time() - started)
        return summary

    # ─────────────────────────────────────────────────────────────
    # Internal helpers
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _align_attachments(records: List[OrderRecord], attachments) -> List[Optional[OrderAttachment]]:
        attachments = list(attachments or [])
        if len(attachments) > len(records):
            raise InvalidOrderPayload(
                f"{len(attachments)} attachments for {len(records)} orders; each image must belong to an order"
            )
        return attachments + [None] * (len(records) - len(attachments))

    async def _run_batch(self, target: SheetTarget, records: List[OrderRecord],
                         attachments: List[Optional[OrderAttachment]]) -> WriteSummary:
        submitted_at = now_in_timezone(self.timezone)

        await asyncio.to_thread(self.provisioner.ensure_sheet, target, len(self.canonical_schema))
        schema = await asyncio.to_thread(
            self.header_strategy.ensure_headers, target, self.canonical_schema, records
        )
        if not records:
            # Tab and header row are still provisioned for an empty batch
            return WriteSummary(success=True, row_count=0, tab_name=target.tab_name)

        refs = await self._upload_all(records, attachments)

        rows = [
            self.row_mapper.build_row(schema, record, ref, submitted_at)
            for record, ref in zip(records, refs)
        ]

        try:
            write_range = await asyncio.to_thread(
                self.insertion_policy.resolve_write_range, target, len(rows), len(schema)
            )
            start_row = await asyncio.to_thread(self._write_rows, target, write_range, rows)
        except OrderIntakeError:
            raise
        except Exception as e:
            get_logger().log_error(target.tab_name, "RowWriteFailure", str(e))
            raise RowWriteFailure(f"Failed to write orders to '{target.tab_name}': {e}") from e

        return WriteSummary(
            success=True,
            row_count=len(rows),
            tab_name=target.tab_name,
            start_row=start_row,
            end_row=start_row + len(rows) - 1 if start_row else None,
            attachment_urls=[ref.public_url if ref else '' for ref in refs],
        )

    async def _upload_all(self, records: List[OrderRecord],
                          attachments: List[Optional[OrderAttachment]]) -> List[Optional[AttachmentRef]]:
        """
        Fan out uploads; completion order is irrelevant because every result
        carries the index of the order it belongs to.
        """
        batch_ms = int(time.time() * 1000)
        tasks = [
            asyncio.create_task(self._upload_one(index, record, attachment, batch_ms))
            for index, (record, attachment) in enumerate(zip(records, attachments))
            if attachment is not None
        ]

        refs: List[Optional[AttachmentRef]] = [None] * len(records)
        try:
            for finished in asyncio.as_completed(tasks):
                index, ref = await finished
                refs[index] = ref
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return refs

    async def _upload_one(self, index: int, record: OrderRecord, attachment: OrderAttachment,
                          batch_ms: int) -> Tuple[int, AttachmentRef]:
        name = self._attachment_name(record, attachment, index, batch_ms)
        try:
            ref = await asyncio.to_thread(
                self.attachment_store.upload,
                attachment.content,
                attachment.mime_type,
                name,
                self.drive_folder_id,
            )
        except AttachmentUploadFailure:
            raise
        except Exception as e:
            raise AttachmentUploadFailure(f"Upload of '{name}' failed: {e}") from e
        return index, ref

    def _attachment_name(self, record: OrderRecord, attachment: OrderAttachment,
                         index: int, batch_ms: int) -> str:
        recipient = record.value_for(self.attachment_name_column)
        recipient = str(recipient).strip() if recipient not in (None, '') else 'unknown'
        return f"주문_{recipient}_{batch_ms}_{index}.{attachment.extension}"

    def _write_rows(self, target: SheetTarget, write_range: RowWriteRange, rows: List[List[str]]) -> Optional[int]:
        """Single batched write; returns the first written row when known."""
        logger = get_logger()

        if write_range.is_native_append:
            updated_range = self.store.append_after_last_row(target.collection_id, target.tab_name, rows)
            logger.log_sheets_write(target.tab_name, updated_range or 'end of table', len(rows))
            match = _UPDATED_RANGE_ROW.search(updated_range or '')
            return int(match.group(1)) if match else None

        start_cell = f"A{write_range.start_row}"
        self.store.write_range(target.collection_id, target.tab_name, start_cell, rows)
        logger.log_sheets_write(target.tab_name, start_cell, len(rows))
        return write_range.start_row
