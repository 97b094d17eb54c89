"""
Status and health check endpoints.

WHAT: Health monitoring for the database
WHY: Quick diagnostics for clients and ops
HOW: FastAPI endpoint calling the DB ping
"""

from fastapi import APIRouter

from ....core.database import ping_database
from ....core.config import settings

router = APIRouter()


@router.get("/health")
def health_check():
    """
    Overall application health check.

    Returns:
        JSON with overall health status, version and database availability
    """
    db_status = ping_database()

    return {
        "status": "healthy" if db_status["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": {"available": db_status["available"]}
        }
    }
