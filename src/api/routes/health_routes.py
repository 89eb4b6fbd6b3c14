"""
Health check route - public, no authentication required.
"""
from fastapi import APIRouter

router = APIRouter()


@router.get(
    "",
    summary="System health check",
)
async def health_check():
    """
    Check system health status.

    Reports configuration and whether Google credentials are loaded.
    """
    health = {
        "status": "healthy",
        "service": "Order Sheet Intake API",
        "version": "1.0.0",
        "components": {}
    }

    try:
        import config
        health["components"]["config"] = "ok"
        health["components"]["spreadsheet"] = "configured" if config.SPREADSHEET_ID else "missing"
        if not config.SPREADSHEET_ID:
            health["status"] = "degraded"
    except Exception as e:
        health["components"]["config"] = f"error: {str(e)}"
        health["status"] = "degraded"

    from api.auth.credential_store import credential_store
    if credential_store.is_authenticated:
        health["components"]["google_auth"] = credential_store.source
    else:
        health["components"]["google_auth"] = "unauthenticated"
        health["status"] = "degraded"

    return health
