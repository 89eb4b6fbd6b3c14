"""
Google Sheets Tabular Store
Thin gspread wrapper exposing the tab/range operations the intake core needs
"""
from typing import Dict, List, Optional, Tuple

import gspread
from gspread.utils import a1_to_rowcol


def get_column_letter(col_num):
    """
    Convert column number to Excel-style column letter
    1 -> A, 26 -> Z, 27 -> AA, etc.

    Args:
        col_num: Column number (1-indexed)

    Returns:
        Column letter(s)
    """
    result = ""
    while col_num > 0:
        col_num -= 1
        result = chr(col_num % 26 + 65) + result
        col_num //= 26
    return result


class SheetsTabularStore:
    """
    Tab listing, creation and range read/write against Google Sheets.

    For tests, pass any object with ``open_by_key`` as ``client`` (a fake
    gspread client); no real API calls are made then.
    """

    DEFAULT_TAB_ROWS = 1000
    DEFAULT_TAB_COLS = 26

    def __init__(self, client):
        self.client = client
        self._spreadsheet_cache: Dict[str, object] = {}
        # Cache worksheet objects to avoid repeated lookups
        self._ws_cache: Dict[Tuple[str, str], object] = {}

    @classmethod
    def from_credentials(cls, credentials) -> "SheetsTabularStore":
        """Authorize a gspread client with google-auth credentials."""
        return cls(gspread.authorize(credentials))

    # ─────────────────────────────────────────────────────────────
    # Internal helpers
    # ─────────────────────────────────────────────────────────────

    def _spreadsheet(self, collection_id: str):
        if collection_id not in self._spreadsheet_cache:
            self._spreadsheet_cache[collection_id] = self.client.open_by_key(collection_id)
        return self._spreadsheet_cache[collection_id]

    def _worksheet(self, collection_id: str, tab_name: str):
        key = (collection_id, tab_name)
        if key not in self._ws_cache:
            self._ws_cache[key] = self._spreadsheet(collection_id).worksheet(tab_name)
        return self._ws_cache[key]

    @staticmethod
    def _grow_to_fit(ws, start_cell: str, grid: List[List[str]]) -> None:
        """Resize the tab so ``grid`` written at ``start_cell`` stays inside it."""
        first_row, first_col = a1_to_rowcol(start_cell)
        last_row = first_row + len(grid) - 1
        last_col = first_col + max((len(row) for row in grid), default=0) - 1
        if ws.row_count < last_row or ws.col_count < last_col:
            ws.resize(
                rows=max(last_row, ws.row_count),
                cols=max(last_col, ws.col_count),
            )

    # ─────────────────────────────────────────────────────────────
    # Public methods
    # ─────────────────────────────────────────────────────────────

    def list_tabs(self, collection_id: str) -> List[str]:
        return [ws.title for ws in self._spreadsheet(collection_id).worksheets()]

    def create_tab(self, collection_id: str, tab_name: str, cols: int = DEFAULT_TAB_COLS) -> None:
        """Add a tab at least DEFAULT_TAB_ROWS x DEFAULT_TAB_COLS in size."""
        ws = self._spreadsheet(collection_id).add_worksheet(
            title=tab_name,
            rows=self.DEFAULT_TAB_ROWS,
            cols=max(cols, self.DEFAULT_TAB_COLS),
        )
        self._ws_cache[(collection_id, tab_name)] = ws

    def read_range(self, collection_id: str, tab_name: str, a1_range: str) -> List[List[str]]:
        """
        Read a range as a grid of strings.

        Google trims trailing empty rows and trailing empty cells per row, so
        rows may be shorter than the requested width and interior blank rows
        come back as ``[]``.
        """
        values = self._worksheet(collection_id, tab_name).get(a1_range)
        return [list(row) for row in (values or [])]

    def write_range(self, collection_id: str, tab_name: str, start_cell: str,
                    grid: List[List[str]]) -> None:
        """
        Overwrite cells starting at ``start_cell`` (e.g. 'A5').

        The tab is resized first when the grid would run past its last row or
        column; Sheets rejects such writes otherwise.
        """
        ws = self._worksheet(collection_id, tab_name)
        if grid:
            self._grow_to_fit(ws, start_cell, grid)
        ws.update(
            values=grid,
            range_name=start_cell,
            value_input_option='USER_ENTERED',
        )

    def append_after_last_row(self, collection_id: str, tab_name: str,
                              grid: List[List[str]]) -> Optional[str]:
        """Append rows after the table found from A1; returns the updated range if reported."""
        response = self._worksheet(collection_id, tab_name).append_rows(
            grid,
            value_input_option='USER_ENTERED',
            table_range='A1',
        )
        if isinstance(response, dict):
            return response.get('updates', {}).get('updatedRange')
        return None

    def insert_columns(self, collection_id: str, tab_name: str, col_index: int,
                       header_values: List[str]) -> None:
        """
        Insert real sheet columns at 1-based ``col_index`` with the given
        header cells. Existing cells at and after that column shift right,
        so historical rows stay under their labels.
        """
        self._worksheet(collection_id, tab_name).insert_cols(
            [[header] for header in header_values],
            col=col_index,
            value_input_option='USER_ENTERED',
        )
