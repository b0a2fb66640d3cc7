"""
Pipeline orchestration and execution management.

Sequences the analysis phases for one job, reports progress, owns cleanup
on failure and settles the job's cost against the credit ledger.
"""

import asyncio
import math
import time
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from .config import WorkerConfig
from .errors import AnalysisError, ExtractionFailure, InsufficientCredits, UnknownFailure
from .models import (
    AnalysisJob, AnalysisMode, AnalysisPhase, AnalysisReport, AnalysisRequest,
    JobState, ProcessingResult
)
from .adapters.base import CreditLedgerAdapter
from .pipeline.inference import InferenceGateway
from .pipeline.media import MediaExtractor
from .pipeline.scenes import SceneSegmenter
from .pipeline.synthesis import SynthesisStage
from .pipeline.transcribe import analyze_audio
from .pipeline.vision import FrameBatchAnalyzer
from .progress import ProgressTracker
from .logging_setup import log_exception

logger = logging.getLogger("analysis_worker")


def compute_cost(duration_sec: float, mode: AnalysisMode, seconds_per_unit: int = 15) -> int:
    """Credits for a video: one unit per started block of seconds, scaled by mode"""
    base = max(1, math.ceil(duration_sec / seconds_per_unit))
    return math.ceil(base * mode.cost_multiplier)


class PipelineOrchestrator:
    """Runs analysis jobs phase by phase"""

    def __init__(
        self,
        config: WorkerConfig,
        gateway: InferenceGateway,
        progress: ProgressTracker,
        media: MediaExtractor,
        ledger: Optional[CreditLedgerAdapter] = None
    ):
        self.config = config
        self.gateway = gateway
        self.progress = progress
        self.media = media
        self.ledger = ledger
        self.frame_analyzer = FrameBatchAnalyzer(config, gateway, progress)
        self.synthesis = SynthesisStage(config, gateway, progress)
        self.jobs: Dict[str, AnalysisJob] = {}
        self.stats = {
            'jobs_processed': 0,
            'jobs_failed': 0,
            'total_processing_time': 0.0,
            'credits_charged': 0,
            'start_time': datetime.now()
        }

    async def execute_pipeline(self, request: AnalysisRequest) -> ProcessingResult:
        """
        Execute the complete analysis pipeline.

        Args:
            request: Analysis to run

        Returns:
            ProcessingResult with execution details
        """
        start_time = time.time()
        try:
            report = await self.run_job(request)
        except AnalysisError as e:
            job = self.jobs.get(request.job_id)
            return ProcessingResult(
                success=False,
                stages_completed=list(job.stages_completed) if job else [],
                job_id=request.job_id,
                error=str(e),
                error_type=e.error_type,
                metrics={'processing_time_sec': time.time() - start_time},
                processing_time_sec=time.time() - start_time
            )

        job = self.jobs[request.job_id]
        return ProcessingResult(
            success=True,
            stages_completed=list(job.stages_completed),
            job_id=request.job_id,
            report=report,
            metrics={
                'processing_time_sec': report.processing_time_sec,
                'frame_count': report.frame_count,
                'scene_count': len(report.scenes),
                'hook_count': len(report.hooks),
                'credits_charged': report.credits_charged,
                'inference': self.gateway.get_stats()
            },
            processing_time_sec=report.processing_time_sec
        )

    async def run_job(self, request: AnalysisRequest) -> AnalysisReport:
        """
        Run one analysis to completion.

        Raises:
            AnalysisError: any abort, tagged with the job id
        """
        start_time = time.time()
        job = self._create_job(request)
        logger.info(f"Starting analysis {job.id} ({job.analysis_mode.value}) for {job.source_ref}")

        try:
            self._enter(job, AnalysisPhase.INITIALIZING, 1, "Initializing analysis")
            job.state = JobState.RUNNING
            job.work_dir = self.media.create_job_dir(job.id)

            # Extraction
            self._enter(job, AnalysisPhase.EXTRACTION, 5, "Acquiring video and extracting frames")
            source_path = await self.media.acquire(job.source_ref, job.work_dir)
            duration = await self.media.probe_duration(source_path)
            cost = compute_cost(duration, job.analysis_mode, self.config.CREDIT_SECONDS_PER_UNIT)
            logger.info(f"Job {job.id}: {duration:.1f}s video, cost {cost} credits")
            await self._preflight(job, cost)

            frames, audio_path = await self._extract_media(job, source_path)
            if not frames:
                raise ExtractionFailure(f"No frames extracted from {job.source_ref}")
            job.stages_completed.append(AnalysisPhase.EXTRACTION.value)

            # Frame analysis
            self._enter(job, AnalysisPhase.FRAME_ANALYSIS, 10, f"Analyzing {len(frames)} frames")
            records = await self.frame_analyzer.analyze(frames, job.id)
            job.stages_completed.append(AnalysisPhase.FRAME_ANALYSIS.value)

            # Audio
            self._enter(job, AnalysisPhase.AUDIO_ANALYSIS, 75, "Transcribing and analyzing audio")
            transcript = await analyze_audio(self.gateway, audio_path, job.id)
            job.stages_completed.append(AnalysisPhase.AUDIO_ANALYSIS.value)

            self._enter(job, AnalysisPhase.CLEANUP, 80, "Removing temporary media")
            self.media.cleanup(job.work_dir)
            job.stages_completed.append(AnalysisPhase.CLEANUP.value)

            # Synthesis
            self._enter(job, AnalysisPhase.SYNTHESIS, 85, "Detecting scenes")
            segmenter = SceneSegmenter(
                fps=job.analysis_mode.fps,
                min_seconds=self.config.SCENE_MIN_SECONDS,
                max_seconds=self.config.SCENE_MAX_SECONDS,
                threshold=self.config.SCENE_CHANGE_THRESHOLD
            )
            scenes = segmenter.segment(records)
            sections = await self.synthesis.run(records, scenes, transcript, job.id)
            job.stages_completed.append(AnalysisPhase.SYNTHESIS.value)

            self._enter(job, AnalysisPhase.SETTLEMENT, 98, f"Settling {cost} credits")
            charged = await self._settle(job, cost)
            job.stages_completed.append(AnalysisPhase.SETTLEMENT.value)

            processing_time = time.time() - start_time
            report = AnalysisReport(
                job_id=job.id,
                analysis_mode=job.analysis_mode,
                duration_sec=duration,
                frame_count=len(records),
                frames=records,
                transcript=transcript,
                scenes=sections['scenes'],
                hooks=sections['hooks'],
                category=sections['category'],
                contextual_analysis=sections['contextual_analysis'],
                content_structure=sections['content_structure'],
                strategic_overview=sections['strategic_overview'],
                opening_hook=sections['opening_hook'],
                credits_charged=charged,
                processing_time_sec=round(processing_time, 3)
            )

            job.state = JobState.COMPLETED
            job.completed_at = datetime.now()
            self._enter(job, AnalysisPhase.COMPLETE, 100, "Analysis complete")
            self.stats['jobs_processed'] += 1
            self.stats['total_processing_time'] += processing_time
            self.stats['credits_charged'] += charged
            logger.info(
                f"Analysis {job.id} completed in {processing_time:.1f}s: "
                f"{len(records)} frames, {len(scenes)} scenes, {len(sections['hooks'])} hooks"
            )
            return report

        except Exception as e:
            error = e if isinstance(e, AnalysisError) else UnknownFailure(
                f"Unexpected error in pipeline execution: {e}", cause=e
            )
            if error.job_id is None:
                error.job_id = job.id
            self._handle_failure(job, error)
            if error is e:
                raise
            raise error from e

        finally:
            self.media.cleanup(job.work_dir)

    def _create_job(self, request: AnalysisRequest) -> AnalysisJob:
        self.evict_expired_jobs()
        job = AnalysisJob(
            id=request.job_id,
            source_ref=request.source_ref,
            analysis_mode=request.analysis_mode,
            user_id=request.user_id
        )
        self.jobs[job.id] = job
        return job

    def _enter(self, job: AnalysisJob, phase: AnalysisPhase, percent: int, message: str) -> None:
        job.phase = phase
        logger.info(f"Job {job.id} -> {phase.value} ({percent}%): {message}")
        self.progress.update(job.id, phase.value, percent, message)

    async def _extract_media(self, job: AnalysisJob, source_path: str):
        """Sample frames and audio concurrently; both finish before any error propagates"""
        frames, audio_path = await asyncio.gather(
            self.media.extract_frames(source_path, job.analysis_mode.fps, job.work_dir),
            self.media.extract_audio(source_path, job.work_dir),
            return_exceptions=True
        )
        errors = [r for r in (frames, audio_path) if isinstance(r, BaseException)]
        for extra in errors[1:]:
            logger.warning(f"Job {job.id}: additional extraction error: {extra}")
        if errors:
            raise errors[0]
        return frames, audio_path

    async def _preflight(self, job: AnalysisJob, cost: int) -> None:
        """Fail before any inference call when the balance cannot cover the cost"""
        if self.ledger is None or not job.user_id:
            logger.info(f"Job {job.id}: no ledger or user, skipping credit pre-flight")
            return

        try:
            balance = await asyncio.to_thread(self.ledger.get_balance, job.user_id)
        except InsufficientCredits:
            raise
        except Exception as e:
            logger.warning(f"Job {job.id}: credit pre-flight unavailable, settling after analysis: {e}")
            return

        if balance < cost:
            raise InsufficientCredits(
                f"Insufficient credits: required {cost}, available {balance}",
                job_id=job.id,
                required=cost,
                available=balance
            )
        logger.info(f"Job {job.id}: pre-flight ok, balance {balance} covers {cost}")

    async def _settle(self, job: AnalysisJob, cost: int) -> int:
        """Debit the job's cost, keyed by job id. Returns the credits charged."""
        if self.ledger is None or not job.user_id:
            logger.info(f"Job {job.id}: no ledger or user, settlement skipped")
            return 0

        balance = await asyncio.to_thread(
            self.ledger.debit,
            job.user_id,
            cost,
            job.id,
            f"Video analysis ({job.analysis_mode.value})"
        )
        logger.info(f"Job {job.id}: charged {cost} credits, balance now {balance}")
        return cost

    def _handle_failure(self, job: AnalysisJob, error: AnalysisError) -> None:
        """Mark the job failed and publish the failure"""
        job.state = JobState.FAILED
        job.completed_at = datetime.now()
        job.error = str(error)
        self.stats['jobs_failed'] += 1
        log_exception(logger, f"Analysis {job.id} failed in {job.phase.value} ({error.error_type}): {error.message}")
        job.phase = AnalysisPhase.FAILED
        self.progress.update(
            job.id,
            AnalysisPhase.FAILED.value,
            self._last_percent(job.id),
            error.message,
            {'error_type': error.error_type}
        )

    def _last_percent(self, job_id: str) -> int:
        entry = self.progress.get_entry(job_id)
        return entry.progress if entry else 0

    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        return self.jobs.get(job_id)

    def evict_expired_jobs(self, now: Optional[datetime] = None) -> int:
        """Drop finished jobs older than JOB_TTL_SEC"""
        now = now or datetime.now()
        ttl = timedelta(seconds=self.config.JOB_TTL_SEC)
        expired = [
            job_id for job_id, job in self.jobs.items()
            if job.completed_at is not None and now - job.completed_at > ttl
        ]
        for job_id in expired:
            del self.jobs[job_id]
        if expired:
            logger.info(f"Evicted {len(expired)} finished jobs")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        uptime = (datetime.now() - self.stats['start_time']).total_seconds()
        avg_processing_time = (
            self.stats['total_processing_time'] / self.stats['jobs_processed']
            if self.stats['jobs_processed'] > 0 else 0
        )
        finished = self.stats['jobs_processed'] + self.stats['jobs_failed']

        return {
            'jobs_processed': self.stats['jobs_processed'],
            'jobs_failed': self.stats['jobs_failed'],
            'jobs_tracked': len(self.jobs),
            'total_processing_time': self.stats['total_processing_time'],
            'average_processing_time': avg_processing_time,
            'credits_charged': self.stats['credits_charged'],
            'uptime_seconds': uptime,
            'success_rate': self.stats['jobs_processed'] / finished if finished > 0 else 0,
            'inference': self.gateway.get_stats()
        }
