"""
Header Registry
===============

Owns the column schema (row 1) of a manager tab. Two strategies share one
interface so a deployment picks one via ``HEADER_STRATEGY``:

static_fixed
    Enforce one exact canonical order. Drift is detected on the first cell
    only: if it matches, the existing row is trusted as-is; otherwise row 1
    is overwritten with the canonical schema.

adaptive_extend
    Start from the fixed columns, add any unseen order keys, and keep the
    reserved columns (attachment link, timestamp) pinned last. On a tab that
    already has a header, unseen keys become real inserted sheet columns right
    before the first reserved column, so existing rows shift with their labels.

Both strategies fall back to force-writing their target schema when a read or
write fails: a present header matters more than unknown existing columns.
"""
from typing import Iterable, List, Sequence

from order_intake_contract import HeaderWriteFailure, SheetTarget
from sheets.tabular_store import get_column_letter
from utils.logger import get_logger


class HeaderStrategy:
    """Base class: shared read / forced-write plumbing."""

    name = ""

    def __init__(self, store, reserved_columns: Sequence[str] = ()):
        self.store = store
        self.reserved_columns = list(reserved_columns)

    def ensure_headers(self, target: SheetTarget, canonical_schema: Sequence[str],
                       records: Iterable = ()) -> List[str]:
        raise NotImplementedError

    def _read_header_row(self, target: SheetTarget) -> List[str]:
        rows = self.store.read_range(target.collection_id, target.tab_name, '1:1')
        return list(rows[0]) if rows else []

    def _write_header_row(self, target: SheetTarget, header: List[str], clear_width: int = 0) -> None:
        # Blank out stale labels beyond the new header
        values = list(header) + [''] * max(clear_width - len(header), 0)
        self.store.write_range(target.collection_id, target.tab_name, 'A1', [values])

    def _force_write(self, target: SheetTarget, header: List[str], cause: Exception) -> List[str]:
        logger = get_logger()
        logger.warning(
            f"Header check failed for '{target.tab_name}' ({cause}); forcing header row",
            component="Headers",
        )
        try:
            self._write_header_row(target, header)
        except Exception as e:
            raise HeaderWriteFailure(f"Failed to write header row for '{target.tab_name}': {e}") from e
        return list(header)


class StaticFixedHeaderStrategy(HeaderStrategy):
    """Always enforce one exact canonical column order."""

    name = "static_fixed"

    def ensure_headers(self, target: SheetTarget, canonical_schema: Sequence[str],
                       records: Iterable = ()) -> List[str]:
        canonical = list(canonical_schema)
        if not canonical:
            raise ValueError("canonical_schema cannot be empty")

        try:
            existing = self._read_header_row(target)

            if existing and existing[0] == canonical[0]:
                return existing

            self._write_header_row(target, canonical, clear_width=len(existing))
            get_logger().info(f"[{target.tab_name}] 헤더 강제 설정 완료", component="Headers")
            return canonical
        except HeaderWriteFailure:
            raise
        except Exception as e:
            return self._force_write(target, canonical, e)


class AdaptiveExtendHeaderStrategy(HeaderStrategy):
    """Grow the header left-to-right with unseen keys, reserved columns last."""

    name = "adaptive_extend"

    def target_schema(self, canonical_schema: Sequence[str], records: Iterable = ()) -> List[str]:
        """Fixed columns, then unseen record keys in first-seen order, then reserved columns."""
        fixed = [c for c in canonical_schema if c not in self.reserved_columns]
        reserved = [c for c in canonical_schema if c in self.reserved_columns]
        for col in self.reserved_columns:
            if col not in reserved:
                reserved.append(col)

        extra: List[str] = []
        for record in records:
            for key in record.field_names():
                if not key.strip():
                    continue
                if key in fixed or key in reserved or key in extra:
                    continue
                extra.append(key)

        return fixed + extra + reserved

    def ensure_headers(self, target: SheetTarget, canonical_schema: Sequence[str],
                       records: Iterable = ()) -> List[str]:
        desired = self.target_schema(canonical_schema, list(records))
        logger = get_logger()

        try:
            header = self._read_header_row(target)

            if not any(cell.strip() for cell in header):
                self._write_header_row(target, desired, clear_width=len(header))
                logger.info(f"[{target.tab_name}] wrote header ({len(desired)} columns)", component="Headers")
                return desired

            missing_reserved = [c for c in self.reserved_columns if c not in header]
            if missing_reserved:
                start_cell = f"{get_column_letter(len(header) + 1)}1"
                self.store.write_range(target.collection_id, target.tab_name, start_cell, [missing_reserved])
                header.extend(missing_reserved)

            new_columns = [c for c in desired if c not in header]
            if new_columns:
                positions = [header.index(c) for c in self.reserved_columns]
                insert_at = min(positions) if positions else len(header)
                if insert_at >= len(header):
                    start_cell = f"{get_column_letter(len(header) + 1)}1"
                    self.store.write_range(target.collection_id, target.tab_name, start_cell, [new_columns])
                else:
                    self.store.insert_columns(
                        target.collection_id, target.tab_name, insert_at + 1, new_columns
                    )
                header[insert_at:insert_at] = new_columns
                logger.info(
                    f"[{target.tab_name}] added columns {new_columns} at position {insert_at + 1}",
                    component="Headers",
                )

            return header
        except HeaderWriteFailure:
            raise
        except Exception as e:
            return self._force_write(target, desired, e)


HEADER_STRATEGIES = {
    StaticFixedHeaderStrategy.name: StaticFixedHeaderStrategy,
    AdaptiveExtendHeaderStrategy.name: AdaptiveExtendHeaderStrategy,
}


def build_header_strategy(name: str, store, reserved_columns: Sequence[str]) -> HeaderStrategy:
    """Instantiate the configured header strategy by name."""
    try:
        strategy_cls = HEADER_STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown header strategy '{name}'. Expected one of {sorted(HEADER_STRATEGIES)}")
    return strategy_cls(store, reserved_columns)
