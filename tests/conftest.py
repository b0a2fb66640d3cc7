import re
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest
from PIL import Image

from analysis_worker.config import WorkerConfig
from analysis_worker.models import Frame, FrameAnalysisRecord
from analysis_worker.pipeline.inference import InferenceGateway

API_URL = "https://api.openai.com/v1/chat/completions"
FRAME_INDEX = re.compile(r"FRAME_(\d+):")


def chat_response(text):
    message = SimpleNamespace(content=text, refusal=None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def api_error(status, headers=None):
    """Build the OpenAI client error the SDK raises for an HTTP status"""
    response = httpx.Response(status, headers=headers or {}, request=httpx.Request("POST", API_URL))
    if status == 429:
        return openai.RateLimitError("rate limited", response=response, body=None)
    if status >= 500:
        return openai.InternalServerError("server error", response=response, body=None)
    return openai.BadRequestError("bad request", response=response, body=None)


def prompt_text(kwargs):
    content = kwargs["messages"][-1]["content"]
    if isinstance(content, list):
        return content[0]["text"]
    return content


def frame_indices(kwargs):
    return [int(i) for i in FRAME_INDEX.findall(prompt_text(kwargs))]


def marker_response(indices):
    return "\n\n".join(
        f"FRAME_{i}:\nVISUAL_DESCRIPTION: A person in a kitchen, frame {i}\n"
        f"SETTING: kitchen\nCONTEXTUAL_MEANING: Setup moment {i}"
        for i in indices
    )


class FakeOpenAI:
    """
    Stand-in for AsyncOpenAI.

    `responder` is either a list consumed in order or a callable taking the
    request kwargs. Items that are exceptions are raised.
    """

    def __init__(self, responder=None, transcription=None):
        self.responder = responder if responder is not None else []
        self.transcription = transcription
        self.calls = []
        self.transcription_calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=self._transcribe))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if callable(self.responder):
            result = self.responder(kwargs)
        else:
            result = self.responder.pop(0)
        if isinstance(result, BaseException):
            raise result
        return chat_response(result)

    async def _transcribe(self, **kwargs):
        self.transcription_calls.append(kwargs)
        if isinstance(self.transcription, BaseException):
            raise self.transcription
        return self.transcription or SimpleNamespace(text="", segments=[], duration=0.0)


class FakeClock:
    """Monotonic clock whose sleep only records and advances time"""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def config(tmp_path):
    return WorkerConfig(OPENAI_API_KEY="sk-test", DATA_DIR=str(tmp_path))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_gateway(config, clock):
    def factory(client, cfg=None):
        return InferenceGateway(cfg or config, client=client, sleep=clock.sleep, clock=clock)
    return factory


@pytest.fixture
def make_frames(tmp_path):
    def factory(count, fps=2):
        frames_dir = tmp_path / "frames"
        frames_dir.mkdir(exist_ok=True)
        frames = []
        for i in range(count):
            path = frames_dir / f"frame_{i + 1:05d}.jpg"
            Image.new("RGB", (32, 24), color=(i * 10 % 255, 40, 90)).save(path)
            frames.append(Frame(index=i, timestamp=round(i / fps, 3), path=str(path)))
        return frames
    return factory


def make_record(index, description, fps=2, contextual_meaning="Context", status=None):
    record = FrameAnalysisRecord(
        frame_index=index,
        timestamp=round(index / fps, 3),
        description=description,
        contextual_meaning=contextual_meaning
    )
    if status is not None:
        record.status = status
    return record


@pytest.fixture
def audio_file(tmp_path) -> Path:
    path = tmp_path / "audio.mp3"
    path.write_bytes(b"ID3 fake audio")
    return path
