"""
Main worker service.

Wires configuration, logging, the inference gateway, the progress tracker,
the credit ledger and media acquisition into a PipelineOrchestrator, and
provides a command line runner for single analyses.
"""

import argparse
import asyncio
import json
import os
import signal
import sys
import logging
from typing import Optional, Dict, Any, Set

from .config import WorkerConfig
from .adapters.base import CreditLedgerAdapter
from .adapters.memory_adapter import InMemoryCreditLedger
from .adapters.postgres_adapter import PostgresCreditLedger
from .adapters.s3_adapter import S3MediaSource
from .errors import AnalysisError
from .models import AnalysisMode, AnalysisReport, AnalysisRequest, ProcessingResult
from .orchestrator import PipelineOrchestrator
from .pipeline.inference import InferenceGateway
from .pipeline.media import MediaExtractor
from .progress import ProgressTracker
from .logging_setup import setup_logging, log_exception
from .http_server import start_health_server

logger = logging.getLogger("analysis_worker")


class WorkerService:
    """Owns the long-lived collaborators shared by every analysis"""

    def __init__(self, config: Optional[WorkerConfig] = None):
        self.config = config or WorkerConfig.from_env()
        self.gateway: Optional[InferenceGateway] = None
        self.progress: Optional[ProgressTracker] = None
        self.ledger: Optional[CreditLedgerAdapter] = None
        self.s3_source: Optional[S3MediaSource] = None
        self.media: Optional[MediaExtractor] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.health_server = None
        self.running = False
        self._sweeper: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def initialize(self):
        """Initialize collaborators based on configuration"""
        try:
            setup_logging(self.config.LOG_LEVEL, os.path.join(self.config.DATA_DIR, "worker"))
            self.config.validate()

            self.gateway = InferenceGateway(self.config)
            self.progress = ProgressTracker(
                max_age_sec=self.config.PROGRESS_MAX_AGE_SEC,
                sweep_interval_sec=self.config.PROGRESS_SWEEP_INTERVAL_SEC
            )

            self.ledger = self._create_ledger()
            if self.ledger is not None:
                self.ledger.connect()

            self.s3_source = S3MediaSource(region=self.config.AWS_REGION)
            self.media = MediaExtractor(self.config, s3_source=self.s3_source)

            self.orchestrator = PipelineOrchestrator(
                self.config, self.gateway, self.progress, self.media, self.ledger
            )

            self.health_server = start_health_server(self)

            logger.info(f"Worker service initialized ({self.config.LEDGER_TYPE} ledger)")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def _create_ledger(self) -> Optional[CreditLedgerAdapter]:
        """Create the credit ledger based on configuration"""
        config = self.config.LEDGER_CONFIG

        if self.config.LEDGER_TYPE == "postgres":
            return PostgresCreditLedger(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )

        elif self.config.LEDGER_TYPE == "memory":
            return InMemoryCreditLedger(initial_balance=config.get("initial_balance", 100))

        elif self.config.LEDGER_TYPE == "none":
            return None

        else:
            raise ValueError(f"Unsupported ledger type: {self.config.LEDGER_TYPE}")

    async def start(self):
        """Start background housekeeping on the running loop"""
        if self.running:
            logger.warning("Worker service is already running")
            return

        self.running = True
        self._sweeper = asyncio.create_task(self.progress.run_sweeper())
        logger.info("Worker service started")

    def submit(self, request: AnalysisRequest) -> asyncio.Task:
        """Schedule an analysis on the running loop and return its task"""
        task = asyncio.create_task(self.orchestrator.execute_pipeline(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Submitted analysis {request.job_id}")
        return task

    async def run_job(self, request: AnalysisRequest) -> AnalysisReport:
        """Run one analysis and return its report, raising on failure"""
        return await self.orchestrator.run_job(request)

    async def execute(self, request: AnalysisRequest) -> ProcessingResult:
        return await self.orchestrator.execute_pipeline(request)

    def read_progress(self, job_id: str) -> Dict[str, Any]:
        return self.progress.read(job_id)

    async def stop(self):
        """Stop the worker service"""
        if not self.running:
            return

        self.running = False

        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} running analyses")
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self.close()
        logger.info("Worker service stopped")

    def close(self):
        """Release adapters and the health server"""
        if self._closed:
            return
        self._closed = True
        if self.health_server:
            self.health_server.stop()
            self.health_server = None
        if self.ledger:
            self.ledger.close()
        if self.s3_source:
            self.s3_source.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'running': self.running,
            'active_jobs': len(self._tasks),
            'config': {
                'ledger_type': self.config.LEDGER_TYPE,
                'vision_model': self.config.VISION_MODEL,
                'reasoning_model': self.config.REASONING_MODEL,
                'frame_batch_size': self.config.FRAME_BATCH_SIZE,
                'parallel_slots': self.config.PARALLEL_SLOTS
            }
        }

        if self.orchestrator:
            stats['orchestrator'] = self.orchestrator.get_stats()
        if self.progress is not None:
            stats['progress_entries'] = len(self.progress)
        if self.ledger is not None:
            stats['ledger'] = self.ledger.get_stats()

        return stats


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    logger.info(f"Received signal {signum}, shutting down...")
    sys.exit(0)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Analyze a video and print the report as JSON")
    parser.add_argument("source", help="Local path, http(s) URL or s3:// URI of the video")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in AnalysisMode],
        default=AnalysisMode.STANDARD.value,
        help="Sampling density (default: standard)"
    )
    parser.add_argument("--user-id", default=None, help="User charged for the analysis")
    parser.add_argument("--job-id", default=None, help="Request id, generated when omitted")
    return parser.parse_args(argv)


async def run_once(service: WorkerService, request: AnalysisRequest) -> AnalysisReport:
    await service.start()
    try:
        return await service.run_job(request)
    finally:
        await service.stop()


def main(argv=None):
    """Main entry point"""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    args = parse_args(argv)
    service = WorkerService()

    try:
        service.initialize()
        request = AnalysisRequest(
            source_ref=args.source,
            user_id=args.user_id,
            analysis_mode=args.mode,
            job_id=args.job_id
        )
        report = asyncio.run(run_once(service, request))
        print(json.dumps(report.to_dict(), indent=2, default=str))
    except AnalysisError as e:
        logger.error(f"Analysis failed ({e.error_type}): {e}")
        sys.exit(1)
    except Exception as e:
        log_exception(logger, f"Worker failed: {str(e)}")
        sys.exit(1)
    finally:
        service.close()


if __name__ == "__main__":
    main()
