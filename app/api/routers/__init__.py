"""
app/api/routers package marker.
"""

from app.api.routers.batch_orchestrator import router as batch_orchestrator_router
from app.api.routers.crawler import router as crawler_router
from app.api.routers.import_queue import router as import_queue_router

__all__ = [
    "batch_orchestrator_router",
    "crawler_router",
    "import_queue_router",
]
