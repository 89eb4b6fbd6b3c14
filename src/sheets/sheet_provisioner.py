"""
Sheet Provisioner
Makes sure a manager's tab exists in the order workbook before any write.
Best-effort: lookup/creation failures are logged and the caller continues,
a missing tab then surfaces as a write failure.
"""
from typing import List, Tuple

from order_intake_contract import ProvisioningFailure, SheetTarget
from utils.logger import get_logger


class SheetProvisioner:
    """Creates and validates manager tabs"""

    def __init__(self, store):
        """
        Args:
            store: SheetsTabularStore (or a fake with the same methods)
        """
        self.store = store

    def ensure_sheet(self, target: SheetTarget, cols: int = 26) -> None:
        """
        Create ``target.tab_name`` if the workbook does not have it yet.

        Idempotent. Never raises for API failures.

        Raises:
            MissingSelector: If the tab name or workbook id is empty.
        """
        target.validate()
        logger = get_logger()

        try:
            existing_tabs = self.store.list_tabs(target.collection_id)
            if target.tab_name in existing_tabs:
                return

            self.store.create_tab(target.collection_id, target.tab_name, cols=cols)
            logger.info(f"Created tab '{target.tab_name}'", component="Provisioner")
        except Exception as e:
            failure = ProvisioningFailure(f"시트 확인 오류: {e}")
            logger.log_error(target.tab_name, type(failure).__name__, failure.message)

    def validate_tab_structure(self, target: SheetTarget, expected_columns: List[str],
                               strict_positions: bool = True) -> Tuple[bool, List[str]]:
        """
        Check that the tab exists and its header row carries every expected column.

        Returns:
            Tuple of (is_valid, list_of_issues).
        """
        issues: List[str] = []

        try:
            existing_tabs = self.store.list_tabs(target.collection_id)
        except Exception as e:
            return (False, [f"Cannot open workbook {target.collection_id}: {e}"])

        if target.tab_name not in existing_tabs:
            return (False, [f"Missing tab: {target.tab_name}"])

        try:
            rows = self.store.read_range(target.collection_id, target.tab_name, '1:1')
        except Exception as e:
            return (False, [f"Cannot read headers for tab '{target.tab_name}': {e}"])

        headers = rows[0] if rows else []
        for col in expected_columns:
            if col not in headers:
                issues.append(f"Tab '{target.tab_name}': missing column '{col}'")

        if not strict_positions:
            return (len(issues) == 0, issues)

        # Position drift: labels must stay over their data
        for idx, col in enumerate(expected_columns):
            if col in headers and headers.index(col) != idx:
                issues.append(
                    f"Tab '{target.tab_name}': column '{col}' at position {headers.index(col) + 1}, expected {idx + 1}"
                )

        return (len(issues) == 0, issues)
