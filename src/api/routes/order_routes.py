"""
Order routes - submit a batch of orders (with receipt images) to a manager's
tab, parse a free-text order, inspect the sheet schema.
"""
import asyncio
import json
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel

import config
from api.auth.dependencies import get_batch_coordinator, get_order_extractor, raise_http
from order_intake_contract import OrderAttachment, OrderIntakeError, SheetTarget
from utils.logger import get_logger

router = APIRouter()

# ── Pydantic models ──────────────────────────────────────────────

class OrderSubmitResponse(BaseModel):
    """Response after writing a batch of orders."""
    success: bool
    message: str
    row_count: int
    manager: str
    start_row: Optional[int] = None
    end_row: Optional[int] = None
    attachment_urls: List[str] = []


class ParseOrderRequest(BaseModel):
    text: str


class ParseOrderResponse(BaseModel):
    order: Dict[str, str]
    values: List[str]


class SchemaResponse(BaseModel):
    columns: List[str]
    fixed_columns: List[str]
    reserved_columns: List[str]
    header_strategy: str
    insertion_policy: str
    record_format: str


class TabValidationResponse(BaseModel):
    manager: str
    valid: bool
    issues: List[str]


# ── Request parsing helpers ──────────────────────────────────────

def _bad_request(detail: str):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _parse_orders(raw: str) -> List[Any]:
    try:
        orders = json.loads(raw or '[]')
    except json.JSONDecodeError:
        _bad_request("orders must be a JSON array")
    if not isinstance(orders, list):
        _bad_request("orders must be a JSON array")
    return orders


def _parse_image_indexes(raw: Optional[str], image_count: int, order_count: int) -> List[int]:
    """Which order each uploaded image belongs to; positional when not given."""
    if not raw:
        return list(range(image_count))
    try:
        indexes = json.loads(raw)
    except json.JSONDecodeError:
        _bad_request("image_indexes must be a JSON array of order indexes")
    if not isinstance(indexes, list) or len(indexes) != image_count:
        _bad_request("image_indexes must list one order index per image")
    for idx in indexes:
        if not isinstance(idx, int) or isinstance(idx, bool) or not 0 <= idx < order_count:
            _bad_request(f"image index {idx!r} does not match any order")
    if len(set(indexes)) != len(indexes):
        _bad_request("each order can carry at most one image")
    return indexes


async def _read_attachments(images: List[UploadFile], indexes: List[int],
                            order_count: int) -> List[Optional[OrderAttachment]]:
    allowed = {ext.strip().lower() for ext in config.ALLOWED_IMAGE_FORMATS}
    attachments: List[Optional[OrderAttachment]] = [None] * order_count
    for image, order_index in zip(images, indexes):
        ext = os.path.splitext(image.filename or "")[1].lower().lstrip('.')
        if ext and ext not in allowed:
            _bad_request(f"Unsupported file type: .{ext}")
        attachments[order_index] = OrderAttachment(
            content=await image.read(),
            mime_type=image.content_type or 'application/octet-stream',
            filename=image.filename or '',
        )
    return attachments


# ── Routes ────────────────────────────────────────────────────────

@router.post(
    "/submit-orders",
    response_model=OrderSubmitResponse,
    summary="Write a batch of orders to a manager's tab",
)
async def submit_orders(
    manager: Optional[str] = Form(None),
    orders: str = Form('[]'),
    image_indexes: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    coordinator=Depends(get_batch_coordinator),
):
    """
    Multipart form:

    - **manager**: tab name the rows go to (created on first use)
    - **orders**: JSON array of orders (objects, or arrays in positional mode)
    - **images**: optional receipt images, one per order
    - **image_indexes**: optional JSON array mapping each image to an order index
    """
    if not manager or not manager.strip():
        _bad_request("담당자를 선택해주세요.")
    manager = manager.strip()

    images = images or []
    if len(images) > config.MAX_IMAGES_PER_SUBMISSION:
        _bad_request(f"Maximum {config.MAX_IMAGES_PER_SUBMISSION} images per submission")

    payloads = _parse_orders(orders)
    if len(images) > len(payloads):
        _bad_request(f"{len(images)} images for {len(payloads)} orders")
    indexes = _parse_image_indexes(image_indexes, len(images), len(payloads))
    attachments = await _read_attachments(images, indexes, len(payloads))

    target = SheetTarget(collection_id=config.SPREADSHEET_ID, tab_name=manager)
    try:
        summary = await coordinator.submit_batch(target, payloads, attachments)
    except OrderIntakeError as e:
        raise_http(e)
    except Exception as e:
        get_logger().error(f"Unexpected failure for '{manager}': {e}", component="API", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return OrderSubmitResponse(
        message=f"{summary.row_count}건의 주문이 [{manager}] 시트에 저장되었습니다.",
        **summary.to_dict(),
    )


@router.post(
    "/parse-order",
    response_model=ParseOrderResponse,
    summary="Extract one order from free text",
)
async def parse_order(
    request: ParseOrderRequest = Body(...),
    extractor=Depends(get_order_extractor),
):
    """Runs the Gemini extraction; returns the order keyed by column and in column order."""
    try:
        order = await asyncio.to_thread(extractor.extract, request.text)
    except OrderIntakeError as e:
        raise_http(e)
    return ParseOrderResponse(order=order, values=extractor.to_positional(order))


@router.get(
    "/schema",
    response_model=SchemaResponse,
    summary="Configured sheet schema and strategies",
)
async def get_schema():
    return SchemaResponse(
        columns=config.CANONICAL_COLUMNS,
        fixed_columns=config.ORDER_FIXED_COLUMNS,
        reserved_columns=config.RESERVED_COLUMNS,
        header_strategy=config.HEADER_STRATEGY,
        insertion_policy=config.INSERTION_POLICY,
        record_format=config.ORDER_RECORD_FORMAT,
    )


@router.get(
    "/tabs/{manager}/validate",
    response_model=TabValidationResponse,
    summary="Check a manager tab's header row",
)
async def validate_tab(manager: str, coordinator=Depends(get_batch_coordinator)):
    """Reports missing columns and, under static_fixed headers, columns out of position."""
    target = SheetTarget(collection_id=config.SPREADSHEET_ID, tab_name=manager)
    try:
        target.validate()
    except OrderIntakeError as e:
        raise_http(e)

    valid, issues = await asyncio.to_thread(
        coordinator.provisioner.validate_tab_structure,
        target,
        config.CANONICAL_COLUMNS,
        config.HEADER_STRATEGY == 'static_fixed',
    )
    return TabValidationResponse(manager=manager, valid=valid, issues=issues)
