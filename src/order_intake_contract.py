"""
Order Intake – Shared Contract
==============================

Types passed between the sheet reconciliation components and the error
taxonomy surfaced to the HTTP layer.

Every error carries an ``http_status`` so the API can map it without
inspecting messages.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


# ─────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────

class OrderIntakeError(Exception):
    """Base class for every failure surfaced by the intake core."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthRequired(OrderIntakeError):
    """No valid Google credential is loaded."""

    http_status = 401


class MissingSelector(OrderIntakeError):
    """Manager / tab name (or spreadsheet id) was not supplied."""

    http_status = 400


class InvalidOrderPayload(OrderIntakeError):
    """Order payload shape does not match the configured record format."""

    http_status = 400


class ProvisioningFailure(OrderIntakeError):
    """Tab existence check or creation failed. Logged, never raised by ensure_sheet."""


class HeaderWriteFailure(OrderIntakeError):
    """Header row could not be written even by the forced fallback."""


class AttachmentUploadFailure(OrderIntakeError):
    """An attachment upload failed; the whole batch is aborted."""


class RowWriteFailure(OrderIntakeError):
    """The batched row write failed."""


class ExtractionFailure(OrderIntakeError):
    """Free-text order extraction failed."""


# ─────────────────────────────────────────────────────────────
# Types
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SheetTarget:
    """Destination tab: spreadsheet id + human-chosen tab name (manager)."""

    collection_id: str
    tab_name: str

    def validate(self) -> None:
        if not (self.tab_name or "").strip():
            raise MissingSelector("담당자를 선택해주세요.")
        if not (self.collection_id or "").strip():
            raise MissingSelector("SPREADSHEET_ID is not configured")

    @property
    def key(self):
        return (self.collection_id, self.tab_name)


@dataclass
class OrderAttachment:
    """Raw uploaded file paired with one order."""

    content: bytes
    mime_type: str
    filename: str = ""

    @property
    def extension(self) -> str:
        if "." in self.filename:
            return self.filename.rsplit(".", 1)[-1]
        return self.mime_type.rsplit("/", 1)[-1] if "/" in self.mime_type else "bin"


@dataclass(frozen=True)
class AttachmentRef:
    """Uploaded file locator consumed once by the row mapper."""

    file_id: str
    public_url: str


@dataclass(frozen=True)
class RowWriteRange:
    """
    Where a batch lands. ``start_row`` is 1-based; ``None`` means the rows are
    handed to the Sheets append endpoint.
    """

    start_row: Optional[int]
    row_count: int

    @property
    def is_native_append(self) -> bool:
        return self.start_row is None

    @property
    def end_row(self) -> Optional[int]:
        if self.start_row is None or self.row_count <= 0:
            return None
        return self.start_row + self.row_count - 1


@dataclass
class WriteSummary:
    """Result of one submitted batch."""

    success: bool
    row_count: int
    tab_name: str
    start_row: Optional[int] = None
    end_row: Optional[int] = None
    attachment_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "row_count": self.row_count,
            "manager": self.tab_name,
            "start_row": self.start_row,
            "end_row": self.end_row,
            "attachment_urls": list(self.attachment_urls),
        }
