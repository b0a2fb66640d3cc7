"""
Domain models for the analysis worker.

Defines the core data structures passed between pipeline stages.
Response schemas requested from the inference service are pydantic
models kept next to the stage that asks for them.
"""

import random
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


class AnalysisMode(str, Enum):
    """Sampling density of an analysis"""
    FINE = "fine"
    STANDARD = "standard"
    BROAD = "broad"

    @property
    def fps(self) -> int:
        return {"fine": 4, "standard": 2, "broad": 1}[self.value]

    @property
    def cost_multiplier(self) -> float:
        return {"fine": 2.0, "standard": 1.0, "broad": 0.5}[self.value]

    @property
    def sampling_interval(self) -> float:
        return 1.0 / self.fps


class JobState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisPhase(str, Enum):
    INITIALIZING = "initializing"
    EXTRACTION = "extraction"
    FRAME_ANALYSIS = "frame_analysis"
    AUDIO_ANALYSIS = "audio_analysis"
    CLEANUP = "cleanup"
    SYNTHESIS = "comprehensive_analysis"
    SETTLEMENT = "settlement"
    COMPLETE = "complete"
    FAILED = "failed"


class FrameStatus(str, Enum):
    """How a frame record came to be"""
    OK = "ok"
    DECLINED = "declined"
    FAILED = "failed"
    FILLER = "filler"


def generate_job_id() -> str:
    """Generate a request id of the form req_<epoch-ms>_<random>"""
    suffix = ''.join(random.choices('abcdefghijklmnopqrstuvwxyz0123456789', k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


@dataclass
class AnalysisRequest:
    """What the submission surface hands to the pipeline"""
    source_ref: str
    user_id: Optional[str] = None
    analysis_mode: AnalysisMode = AnalysisMode.STANDARD
    job_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.analysis_mode, str):
            self.analysis_mode = AnalysisMode(self.analysis_mode.lower())
        if not self.job_id:
            self.job_id = generate_job_id()


@dataclass
class AnalysisJob:
    """Lifecycle record of a single analysis, owned by the orchestrator"""
    id: str
    source_ref: str
    analysis_mode: AnalysisMode
    user_id: Optional[str] = None
    state: JobState = JobState.CREATED
    phase: AnalysisPhase = AnalysisPhase.INITIALIZING
    work_dir: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    stages_completed: List[str] = field(default_factory=list)


@dataclass
class Frame:
    """A sampled video frame on disk"""
    index: int
    timestamp: float
    path: str


@dataclass
class FrameAnalysisRecord:
    """Model observations for one frame"""
    frame_index: int
    timestamp: float
    description: str
    contextual_meaning: str
    status: FrameStatus = FrameStatus.OK

    @property
    def is_degraded(self) -> bool:
        return self.status in (FrameStatus.DECLINED, FrameStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'frame_index': self.frame_index,
            'timestamp': self.timestamp,
            'description': self.description,
            'contextual_meaning': self.contextual_meaning,
            'status': self.status.value
        }


@dataclass
class TranscriptSegment:
    """Represents a transcript segment"""
    start: float
    end: float
    text: str


@dataclass
class AudioTranscript:
    """Transcription plus the dialogue / music / sound separation"""
    segments: List[TranscriptSegment] = field(default_factory=list)
    text: str = ""
    separation: Optional[Dict[str, Any]] = None
    summary: str = ""
    has_audio: bool = True

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segments': [asdict(s) for s in self.segments],
            'text': self.text,
            'separation': self.separation,
            'summary': self.summary,
            'has_audio': self.has_audio
        }


@dataclass
class Scene:
    """A contiguous inclusive frame range judged continuous"""
    scene_number: int
    start_frame: int
    end_frame: int
    sampling_interval: float

    @property
    def frame_count(self) -> int:
        return self.end_frame - self.start_frame + 1

    @property
    def frame_indices(self) -> List[int]:
        return list(range(self.start_frame, self.end_frame + 1))

    @property
    def start_time(self) -> float:
        return self.start_frame * self.sampling_interval

    @property
    def end_time(self) -> float:
        return (self.end_frame + 1) * self.sampling_interval

    @property
    def duration(self) -> float:
        return self.frame_count * self.sampling_interval

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scene_number': self.scene_number,
            'start_frame': self.start_frame,
            'end_frame': self.end_frame,
            'start_time': round(self.start_time, 3),
            'end_time': round(self.end_time, 3),
            'duration': round(self.duration, 3)
        }


@dataclass
class ProgressEntry:
    """Latest progress snapshot for a job"""
    phase: str
    progress: int
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)
    updated_at: float = field(default_factory=time.time)
    started_at: float = field(default_factory=time.time)

    def time_estimate(self) -> Dict[str, Optional[int]]:
        """Elapsed, remaining and total seconds extrapolated from progress"""
        elapsed = max(0.0, self.updated_at - self.started_at)
        if self.progress <= 0:
            return {'elapsed': int(elapsed), 'remaining': None, 'total': None}
        if self.progress >= 100:
            return {'elapsed': int(elapsed), 'remaining': 0, 'total': int(elapsed)}
        remaining = elapsed * (100 - self.progress) / self.progress
        return {
            'elapsed': int(elapsed),
            'remaining': int(round(remaining)),
            'total': int(round(elapsed + remaining))
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'phase': self.phase,
            'progress': self.progress,
            'message': self.message,
            'detail': self.detail,
            'timestamp': self.updated_at,
            'time_estimate': self.time_estimate()
        }


@dataclass
class AnalysisReport:
    """Final multi-part analysis of a video"""
    job_id: str
    analysis_mode: AnalysisMode
    duration_sec: float
    frame_count: int
    frames: List[FrameAnalysisRecord]
    transcript: AudioTranscript
    scenes: List[Dict[str, Any]]
    hooks: List[Dict[str, Any]]
    category: Dict[str, Any]
    contextual_analysis: Dict[str, Any]
    content_structure: str
    strategic_overview: str
    opening_hook: Optional[str] = None
    credits_charged: int = 0
    processing_time_sec: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'analysis_mode': self.analysis_mode.value,
            'duration_sec': self.duration_sec,
            'frame_count': self.frame_count,
            'frames': [f.to_dict() for f in self.frames],
            'transcript': self.transcript.to_dict(),
            'scenes': self.scenes,
            'hooks': self.hooks,
            'category': self.category,
            'contextual_analysis': self.contextual_analysis,
            'content_structure': self.content_structure,
            'strategic_overview': self.strategic_overview,
            'opening_hook': self.opening_hook,
            'credits_charged': self.credits_charged,
            'processing_time_sec': self.processing_time_sec
        }


@dataclass
class ProcessingResult:
    """Represents the result of one pipeline execution"""
    success: bool
    stages_completed: List[str]
    job_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    report: Optional[AnalysisReport] = None
    metrics: Dict[str, Any] = None
    processing_time_sec: Optional[float] = None
