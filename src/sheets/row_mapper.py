"""
Row Mapper
==========

Turns one order (plus its uploaded attachment, if any) into a positional row
that matches a tab's resolved header.

Orders arrive in one of two shapes, selected by ``ORDER_RECORD_FORMAT``:

keyed
    ``{"제품명": "Widget", "수취인명": "Lee"}`` – looked up by column name.
positional
    ``["Widget", "Lee", ...]`` – index i is ORDER_FIXED_COLUMNS[i]; values
    past the fixed columns are dropped.

The attachment and timestamp columns are always computed here and never read
from the order, whichever shape it has.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from order_intake_contract import AttachmentRef, InvalidOrderPayload


# ─────────────────────────────────────────────────────────────
# Order record variants
# ─────────────────────────────────────────────────────────────

class OrderRecord:
    """Anything that can answer "what is the value for this column"."""

    def value_for(self, column: str) -> Optional[Any]:
        raise NotImplementedError

    def field_names(self) -> List[str]:
        """Column names this record can introduce (used by adaptive headers)."""
        return []


class KeyedOrderRecord(OrderRecord):
    def __init__(self, fields: Mapping[str, Any]):
        self.fields = {str(k): v for k, v in fields.items()}

    def value_for(self, column: str) -> Optional[Any]:
        return self.fields.get(column)

    def field_names(self) -> List[str]:
        return list(self.fields.keys())

    def __repr__(self):
        return f"KeyedOrderRecord({self.fields!r})"


class PositionalOrderRecord(OrderRecord):
    def __init__(self, values: Sequence[Any], fixed_columns: Sequence[str]):
        self.values = list(values)
        self._index = {col: i for i, col in enumerate(fixed_columns)}

    def value_for(self, column: str) -> Optional[Any]:
        idx = self._index.get(column)
        if idx is None or idx >= len(self.values):
            return None
        return self.values[idx]

    def __repr__(self):
        return f"PositionalOrderRecord({self.values!r})"


def make_order_record(payload: Any, record_format: str, fixed_columns: Sequence[str]) -> OrderRecord:
    """
    Build the configured record variant for one submitted order.

    Raises:
        InvalidOrderPayload: If the payload does not have the configured shape.
    """
    if record_format == 'keyed':
        if not isinstance(payload, Mapping):
            raise InvalidOrderPayload("Each order must be a JSON object of field name to value")
        return KeyedOrderRecord(payload)

    if record_format == 'positional':
        if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
            raise InvalidOrderPayload("Each order must be a JSON array of field values")
        return PositionalOrderRecord(payload, fixed_columns)

    raise ValueError(f"Unknown order record format '{record_format}'")


# ─────────────────────────────────────────────────────────────
# Timestamp rendering
# ─────────────────────────────────────────────────────────────

def now_in_timezone(tz_name: str) -> datetime:
    return datetime.now(ZoneInfo(tz_name))


def format_submission_timestamp(moment: datetime, locale: str = 'ko-KR') -> str:
    """
    Render a submission time the way a browser renders toLocaleString.

    ko-KR -> '2025. 3. 5. 오후 2:07:09'; any other locale falls back to
    '2025-03-05 14:07:09'.
    """
    if locale == 'ko-KR':
        meridiem = '오전' if moment.hour < 12 else '오후'
        hour = moment.hour % 12 or 12
        return (
            f"{moment.year}. {moment.month}. {moment.day}. "
            f"{meridiem} {hour}:{moment.minute:02d}:{moment.second:02d}"
        )
    return moment.strftime('%Y-%m-%d %H:%M:%S')


# ─────────────────────────────────────────────────────────────
# Row building
# ─────────────────────────────────────────────────────────────

def _cell(value: Any) -> str:
    if value is None:
        return ''
    return value if isinstance(value, str) else str(value)


class RowMapper:
    """Builds sheet rows in resolved header order."""

    def __init__(self, attachment_column: str, timestamp_column: str, locale: str = 'ko-KR'):
        self.attachment_column = attachment_column
        self.timestamp_column = timestamp_column
        self.locale = locale

    def build_row(self, resolved_schema: Sequence[str], record: OrderRecord,
                  attachment_ref: Optional[AttachmentRef], submitted_at: datetime) -> List[str]:
        """
        One cell per header column; missing values become '' so later
        columns never shift.
        """
        timestamp = format_submission_timestamp(submitted_at, self.locale)
        row = []
        for column in resolved_schema:
            if column == self.attachment_column:
                row.append(attachment_ref.public_url if attachment_ref else '')
            elif column == self.timestamp_column:
                row.append(timestamp)
            else:
                row.append(_cell(record.value_for(column)))
        return row
