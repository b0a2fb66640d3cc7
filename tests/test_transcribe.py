import asyncio
import json
from types import SimpleNamespace

import pytest

from analysis_worker.errors import InferenceTransportError
from analysis_worker.models import AudioTranscript, Scene, TranscriptSegment
from analysis_worker.pipeline.transcribe import analyze_audio, audio_context_for_scene

from conftest import FakeOpenAI, api_error

SEPARATION = {
    "audio_type": "Dialogue",
    "confidence": 0.9,
    "dialogue": {
        "content": "Welcome back to the kitchen. Today we make pasta.",
        "segments": [{"start": 0, "end": 3, "text": "Welcome back to the kitchen.", "type": "narration"}],
        "primary_context": "Cooking tutorial intro",
        "is_empty": False
    },
    "music_lyrics": {"is_empty": True},
    "sound_design": {"effects": "chopping", "audio_quality": "clear"},
    "context_priority": "dialogue",
    "reasoning": "Conversational narration",
    "audio_summary": "A host introduces a pasta recipe"
}


def whisper_result():
    return SimpleNamespace(
        text="Welcome back to the kitchen. Today we make pasta.",
        duration=6.0,
        segments=[
            SimpleNamespace(start=0.0, end=3.0, text=" Welcome back to the kitchen."),
            SimpleNamespace(start=3.0, end=6.0, text=" Today we make pasta."),
        ]
    )


def test_no_audio_track_gives_empty_transcript(make_gateway):
    transcript = asyncio.run(analyze_audio(make_gateway(FakeOpenAI()), None, "req_1"))

    assert not transcript.has_audio
    assert transcript.is_empty
    assert transcript.separation is None


def test_transcription_and_separation(make_gateway, audio_file):
    client = FakeOpenAI([json.dumps(SEPARATION)], transcription=whisper_result())

    transcript = asyncio.run(analyze_audio(make_gateway(client), str(audio_file), "req_1"))

    assert [s.text for s in transcript.segments] == ["Welcome back to the kitchen.", "Today we make pasta."]
    assert transcript.separation["audio_type"] == "dialogue"
    assert transcript.separation["dialogue"]["primary_context"] == "Cooking tutorial intro"
    assert "AUDIO TYPE: DIALOGUE (90% confidence)" in transcript.summary


def test_silent_audio_skips_separation(make_gateway, audio_file):
    client = FakeOpenAI(transcription=SimpleNamespace(text="  ", segments=[], duration=4.0))

    transcript = asyncio.run(analyze_audio(make_gateway(client), str(audio_file), "req_1"))

    assert transcript.is_empty
    assert client.calls == []


def test_unusable_separation_falls_back(make_gateway, audio_file):
    client = FakeOpenAI(["not json at all"], transcription=whisper_result())

    transcript = asyncio.run(analyze_audio(make_gateway(client), str(audio_file), "req_1"))

    assert transcript.separation["reasoning"] == "Fallback due to parsing error"
    assert transcript.separation["dialogue"]["content"] == transcript.text


def test_transcription_transport_error_propagates(make_gateway, audio_file, config):
    config.MAX_RETRIES = 0
    client = FakeOpenAI(transcription=api_error(500))

    with pytest.raises(InferenceTransportError):
        asyncio.run(analyze_audio(make_gateway(client), str(audio_file), "req_1"))


def test_audio_context_for_overlapping_scene():
    transcript = AudioTranscript(
        segments=[
            TranscriptSegment(0.0, 3.0, "Welcome back to the kitchen."),
            TranscriptSegment(3.0, 6.0, "Today we make pasta."),
        ],
        text="Welcome back to the kitchen. Today we make pasta.",
        separation=SEPARATION
    )
    scene = Scene(scene_number=1, start_frame=0, end_frame=3, sampling_interval=0.5)

    context = audio_context_for_scene(scene, transcript)

    assert context["transcription"] == "Welcome back to the kitchen."
    assert context["audio_type"] == "dialogue"
    assert context["priority_context"].startswith("HIGH")


def test_audio_context_without_segments():
    scene = Scene(scene_number=1, start_frame=0, end_frame=3, sampling_interval=0.5)
    context = audio_context_for_scene(scene, AudioTranscript(has_audio=False))

    assert context["audio_type"] == "none"
