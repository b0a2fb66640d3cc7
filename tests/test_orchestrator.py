import asyncio
import json
import os
from datetime import datetime, timedelta

import pytest

from analysis_worker.adapters import InMemoryCreditLedger
from analysis_worker.errors import ExtractionFailure, InsufficientCredits, UnknownFailure
from analysis_worker.models import AnalysisMode, AnalysisRequest, FrameStatus, JobState
from analysis_worker.orchestrator import PipelineOrchestrator, compute_cost
from analysis_worker.progress import ProgressTracker

from conftest import FakeOpenAI, frame_indices, marker_response, prompt_text


class FakeMedia:
    """Media extractor that serves pre-rendered frames instead of running ffmpeg"""

    def __init__(self, tmp_path, make_frames, duration=6.0, frame_count=12, fail_on=None):
        self.tmp_path = tmp_path
        self.make_frames = make_frames
        self.duration = duration
        self.frame_count = frame_count
        self.fail_on = fail_on
        self.cleaned = []
        self.extract_calls = 0

    def create_job_dir(self, job_id):
        job_dir = self.tmp_path / f"{job_id}_job"
        job_dir.mkdir(exist_ok=True)
        return str(job_dir)

    async def acquire(self, source_ref, job_dir):
        if self.fail_on == "acquire":
            raise ExtractionFailure(f"Source video not found: {source_ref}")
        return source_ref

    async def probe_duration(self, path):
        return self.duration

    async def extract_frames(self, path, fps, out_dir):
        self.extract_calls += 1
        if self.fail_on == "frames":
            raise RuntimeError("disk full")
        return self.make_frames(self.frame_count, fps)

    async def extract_audio(self, path, out_dir):
        return None

    def cleanup(self, job_dir):
        self.cleaned.append(job_dir)
        if job_dir and os.path.exists(job_dir):
            os.rmdir(job_dir)


def scripted(kwargs):
    prompt = prompt_text(kwargs)
    if "FRAME_" in prompt:
        return marker_response(frame_indices(kwargs))
    if "scene card" in prompt:
        return json.dumps({"scenes": []})
    if "engagement hooks" in prompt:
        return json.dumps({"hooks": [{"timestamp": "1s", "description": "Opening shot"}]})
    if "Classify this video" in prompt:
        return json.dumps({"category": "engaging_education", "confidence": 0.7, "reasoning": "Step by step tips"})
    if "deeper context" in prompt:
        return json.dumps({
            "creator_intent": {"primary_intent": "Teach a recipe"},
            "narrative_structure": {"setup": "Kitchen"},
            "message_delivery": {"core_message": "Cooking is easy"},
            "context_type": "tutorial"
        })
    return "## Overview\nGood video."


@pytest.fixture
def build(config, make_gateway, make_frames, tmp_path):
    def factory(ledger=None, **media_kwargs):
        media = FakeMedia(tmp_path, make_frames, **media_kwargs)
        progress = ProgressTracker()
        client = FakeOpenAI(scripted)
        orchestrator = PipelineOrchestrator(config, make_gateway(client), progress, media, ledger)
        return orchestrator, media, progress, client
    return factory


@pytest.mark.parametrize("duration, mode, expected", [
    (6.0, AnalysisMode.STANDARD, 1),
    (15.0, AnalysisMode.STANDARD, 1),
    (16.0, AnalysisMode.STANDARD, 2),
    (16.0, AnalysisMode.FINE, 4),
    (16.0, AnalysisMode.BROAD, 1),
    (61.0, AnalysisMode.BROAD, 3),
    (0.0, AnalysisMode.STANDARD, 1),
])
def test_compute_cost(duration, mode, expected):
    assert compute_cost(duration, mode) == expected


def test_run_job_produces_report_and_settles(build):
    ledger = InMemoryCreditLedger({"user_1": 5})
    orchestrator, media, progress, _ = build(ledger=ledger)
    request = AnalysisRequest(source_ref="/videos/clip.mp4", user_id="user_1", job_id="req_ok")

    report = asyncio.run(orchestrator.run_job(request))

    assert report.frame_count == 12
    assert [r.frame_index for r in report.frames] == list(range(12))
    assert all(r.status == FrameStatus.OK for r in report.frames)
    assert report.scenes[0]["start_frame"] == 0
    assert report.scenes[-1]["end_frame"] == 11
    assert report.category["category"] == "engaging_education"
    assert report.hooks[0]["timestamp"] == "1s"
    assert report.credits_charged == 1
    assert ledger.get_balance("user_1") == 4
    assert not report.transcript.has_audio

    entry = progress.read("req_ok")
    assert entry["phase"] == "complete"
    assert entry["progress"] == 100
    assert orchestrator.get_job("req_ok").state == JobState.COMPLETED
    assert media.cleaned


def test_insufficient_credits_fail_before_inference(build):
    ledger = InMemoryCreditLedger({"user_1": 0})
    orchestrator, media, progress, client = build(ledger=ledger)
    request = AnalysisRequest(source_ref="/videos/clip.mp4", user_id="user_1", job_id="req_poor")

    with pytest.raises(InsufficientCredits) as exc_info:
        asyncio.run(orchestrator.run_job(request))

    assert exc_info.value.job_id == "req_poor"
    assert client.calls == []
    assert media.extract_calls == 0
    assert progress.read("req_poor")["phase"] == "failed"


class UnreachableLedger(InMemoryCreditLedger):
    def get_balance(self, user_id):
        raise ConnectionError("ledger down")


def test_unreachable_ledger_settles_after_analysis(build):
    ledger = UnreachableLedger({"user_1": 3})
    orchestrator, _, _, _ = build(ledger=ledger)

    report = asyncio.run(orchestrator.run_job(
        AnalysisRequest(source_ref="/videos/clip.mp4", user_id="user_1", job_id="req_late")
    ))

    assert report.credits_charged == 1
    assert ledger.balances["user_1"] == 2


def test_settlement_skipped_without_user(build):
    ledger = InMemoryCreditLedger({"user_1": 3})
    orchestrator, _, _, _ = build(ledger=ledger)

    report = asyncio.run(orchestrator.run_job(AnalysisRequest(source_ref="/videos/clip.mp4")))

    assert report.credits_charged == 0
    assert ledger.get_stats()["usage_transactions"] == 0


def test_extraction_failure_aborts_and_cleans_up(build):
    orchestrator, media, progress, client = build(fail_on="acquire")

    result = asyncio.run(orchestrator.execute_pipeline(
        AnalysisRequest(source_ref="/missing.mp4", job_id="req_missing")
    ))

    assert not result.success
    assert result.error_type == "extraction_failure"
    assert "[req_missing]" in result.error
    assert result.report is None
    assert client.calls == []
    assert media.cleaned
    assert progress.read("req_missing")["phase"] == "failed"
    assert orchestrator.get_stats()["jobs_failed"] == 1


def test_unexpected_error_is_wrapped(build):
    orchestrator, _, _, _ = build(fail_on="frames")

    with pytest.raises(UnknownFailure) as exc_info:
        asyncio.run(orchestrator.run_job(AnalysisRequest(source_ref="/videos/clip.mp4", job_id="req_boom")))

    assert exc_info.value.job_id == "req_boom"
    assert isinstance(exc_info.value.cause, RuntimeError)


def test_execute_pipeline_reports_stages(build):
    orchestrator, _, _, _ = build()

    result = asyncio.run(orchestrator.execute_pipeline(AnalysisRequest(source_ref="/videos/clip.mp4")))

    assert result.success
    assert result.stages_completed == [
        "extraction", "frame_analysis", "audio_analysis", "cleanup", "comprehensive_analysis", "settlement"
    ]
    assert result.metrics["frame_count"] == 12
    assert orchestrator.get_stats()["success_rate"] == 1.0


def test_finished_jobs_are_evicted_after_ttl(build, config):
    orchestrator, _, _, _ = build()
    asyncio.run(orchestrator.run_job(AnalysisRequest(source_ref="/videos/clip.mp4", job_id="req_old")))

    later = datetime.now() + timedelta(seconds=config.JOB_TTL_SEC + 1)
    assert orchestrator.evict_expired_jobs(now=later) == 1
    assert orchestrator.get_job("req_old") is None


class SlowAudioMedia(FakeMedia):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.events = []

    async def extract_frames(self, path, fps, out_dir):
        self.events.append("frames_failed")
        raise ExtractionFailure("ffmpeg could not decode video")

    async def extract_audio(self, path, out_dir):
        await asyncio.sleep(0.01)
        self.events.append("audio_finished")
        raise ExtractionFailure("ffmpeg could not decode audio")

    def cleanup(self, job_dir):
        self.events.append("cleanup")
        super().cleanup(job_dir)


def test_failed_extraction_waits_for_sibling_before_cleanup(config, make_gateway, tmp_path, make_frames):
    media = SlowAudioMedia(tmp_path, make_frames)
    progress = ProgressTracker()
    orchestrator = PipelineOrchestrator(config, make_gateway(FakeOpenAI(scripted)), progress, media)

    with pytest.raises(ExtractionFailure) as exc_info:
        asyncio.run(orchestrator.run_job(AnalysisRequest(source_ref="/videos/clip.mp4", job_id="req_broken")))

    assert "decode video" in str(exc_info.value)
    assert media.events == ["frames_failed", "audio_finished", "cleanup"]
    assert progress.read("req_broken")["phase"] == "failed"
