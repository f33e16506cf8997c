"""
app/services package marker.
"""

from app.services.batch_orchestrator import (
    BatchAlreadyRunningError,
    BatchOrchestrator,
    CancellationToken,
    get_batch_orchestrator,
)
from app.services.candidate_selector import CandidateSelector
from app.services.crawl_job_service import CrawlJobService, get_crawl_job_service
from app.services.crawler_service import CrawlAlreadyRunningError, CrawlerService, get_crawler_service
from app.services.deduplication_gate import DeduplicationGate
from app.services.item_pipeline import ItemPipeline, get_item_pipeline
from app.services.recovery_service import RecoveryService, get_recovery_service
from app.services.run_monitor_service import RunMonitorService, get_run_monitor_service

__all__ = [
    "BatchAlreadyRunningError",
    "BatchOrchestrator",
    "CancellationToken",
    "get_batch_orchestrator",
    "CandidateSelector",
    "CrawlJobService",
    "get_crawl_job_service",
    "CrawlAlreadyRunningError",
    "CrawlerService",
    "get_crawler_service",
    "DeduplicationGate",
    "ItemPipeline",
    "get_item_pipeline",
    "RecoveryService",
    "get_recovery_service",
    "RunMonitorService",
    "get_run_monitor_service",
]
