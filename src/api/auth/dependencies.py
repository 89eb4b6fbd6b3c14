"""
FastAPI dependencies for the intake routes.
Provides the batch coordinator (built from the live Google credentials) and
the free-text extractor, translating intake errors into HTTP errors.
"""
from fastapi import HTTPException

from api.auth.credential_store import credential_store
from order_intake_contract import OrderIntakeError

# Rebuilt whenever the credential store hands out different credentials
_coordinator = None
_coordinator_credentials = None
_extractor = None


def raise_http(error: OrderIntakeError):
    """Map an intake error onto the HTTP status category it belongs to."""
    headers = {"WWW-Authenticate": "Bearer"} if error.http_status == 401 else None
    raise HTTPException(status_code=error.http_status, detail=error.message, headers=headers)


def get_batch_coordinator():
    """
    FastAPI dependency returning a BatchCoordinator bound to the current
    credentials. Answers 401 when no Google credential is loaded.
    """
    global _coordinator, _coordinator_credentials
    try:
        credentials = credential_store.require()
    except OrderIntakeError as e:
        raise_http(e)

    if _coordinator is None or _coordinator_credentials is not credentials:
        from order_intake_coordinator import BatchCoordinator
        from order_intake_drive import DriveAttachmentStore
        from sheets.tabular_store import SheetsTabularStore

        _coordinator = BatchCoordinator.from_config(
            SheetsTabularStore.from_credentials(credentials),
            DriveAttachmentStore.from_credentials(credentials),
        )
        _coordinator_credentials = credentials
    return _coordinator


def get_order_extractor():
    """FastAPI dependency returning the lazily created Gemini extractor."""
    global _extractor
    if _extractor is None:
        from order_intake_extraction import OrderTextExtractor
        try:
            _extractor = OrderTextExtractor()
        except OrderIntakeError as e:
            raise_http(e)
    return _extractor


def reset_dependencies():
    """Drop cached instances (tests, credential rotation)."""
    global _coordinator, _coordinator_credentials, _extractor
    _coordinator = None
    _coordinator_credentials = None
    _extractor = None
