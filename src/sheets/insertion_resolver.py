"""
Insertion-Point Resolver
Decides where a batch of rows is written in a manager tab.

append_only  - count occupied cells in column A, write right after them.
gap_reuse    - reuse blank rows operators left behind (content cleared, row
               kept) before growing the sheet.

Row 1 is always the header and is never a write target.
"""
from typing import List

from order_intake_contract import RowWriteRange, SheetTarget
from sheets.tabular_store import get_column_letter
from utils.logger import get_logger


def _is_blank_row(row: List[str]) -> bool:
    return not any(str(cell).strip() for cell in row)


class InsertionPolicy:
    name = ""

    def __init__(self, store):
        self.store = store

    def resolve_write_range(self, target: SheetTarget, row_count: int, schema_width: int) -> RowWriteRange:
        raise NotImplementedError


class AppendOnlyPolicy(InsertionPolicy):
    """Cheap: one column read, never reuses gaps."""

    name = "append_only"

    def __init__(self, store, use_native_append: bool = False):
        super().__init__(store)
        self.use_native_append = use_native_append

    def resolve_write_range(self, target: SheetTarget, row_count: int, schema_width: int) -> RowWriteRange:
        if row_count <= 0:
            return RowWriteRange(start_row=None, row_count=0)

        if self.use_native_append:
            return RowWriteRange(start_row=None, row_count=row_count)

        column_a = self.store.read_range(target.collection_id, target.tab_name, 'A:A')
        occupied = len(column_a)
        return RowWriteRange(start_row=max(occupied, 1) + 1, row_count=row_count)


class GapReusePolicy(InsertionPolicy):
    """
    Scan the whole tab (up to the last header column) for blank rows.

    With ``require_fit`` the batch only goes into a contiguous blank run that
    can hold all of it; otherwise it lands at the first blank row and is
    written forward from there, overwriting whatever follows the gap.
    """

    name = "gap_reuse"

    def __init__(self, store, require_fit: bool = True):
        super().__init__(store)
        self.require_fit = require_fit

    def resolve_write_range(self, target: SheetTarget, row_count: int, schema_width: int) -> RowWriteRange:
        if row_count <= 0:
            return RowWriteRange(start_row=None, row_count=0)

        last_col = get_column_letter(max(schema_width, 1))
        rows = self.store.read_range(target.collection_id, target.tab_name, f'A:{last_col}')
        total = len(rows)
        append_row = max(total, 1) + 1

        if self.require_fit:
            start = self._first_fitting_run(rows, row_count)
        else:
            start = self._first_blank_row(target, rows, row_count)

        return RowWriteRange(start_row=start or append_row, row_count=row_count)

    def _first_fitting_run(self, rows: List[List[str]], row_count: int):
        run_start = None
        run_len = 0
        for idx in range(1, len(rows)):
            if _is_blank_row(rows[idx]):
                if run_start is None:
                    run_start = idx
                run_len += 1
                if run_len >= row_count:
                    return run_start + 1
            else:
                run_start = None
                run_len = 0
        # Rows past the end of the read are empty, so an open trailing run fits
        if run_start is not None:
            return run_start + 1
        return None

    def _first_blank_row(self, target: SheetTarget, rows: List[List[str]], row_count: int):
        for idx in range(1, len(rows)):
            if not _is_blank_row(rows[idx]):
                continue

            clobbered = [
                i + 1 for i in range(idx, min(idx + row_count, len(rows)))
                if not _is_blank_row(rows[i])
            ]
            if clobbered:
                get_logger().warning(
                    f"Tab '{target.tab_name}': batch of {row_count} at row {idx + 1} "
                    f"overwrites non-blank rows {clobbered}",
                    component="Insertion",
                )
            return idx + 1
        return None


def build_insertion_policy(name: str, store, require_fit: bool = True,
                           use_native_append: bool = False) -> InsertionPolicy:
    """Instantiate the configured insertion policy by name."""
    if name == AppendOnlyPolicy.name:
        return AppendOnlyPolicy(store, use_native_append=use_native_append)
    if name == GapReusePolicy.name:
        return GapReusePolicy(store, require_fit=require_fit)
    raise ValueError(f"Unknown insertion policy '{name}'. Expected 'append_only' or 'gap_reuse'")
