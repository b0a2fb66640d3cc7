import asyncio
import os

import pytest

from analysis_worker.errors import ParseFailure
from analysis_worker.models import Frame, FrameStatus
from analysis_worker.pipeline.vision import (
    FrameBatchAnalyzer, build_batch_prompt, choose_blocks, encode_frame,
    extract_contextual_meaning, parse_batch_response
)
from analysis_worker.progress import ProgressTracker

from conftest import FakeOpenAI, api_error, frame_indices, marker_response


def batch_of(*indices):
    return [Frame(index=i, timestamp=i * 0.5, path=f"/tmp/frame_{i}.jpg") for i in indices]


def test_prompt_lists_every_frame():
    prompt = build_batch_prompt(batch_of(3, 4, 5))
    assert "FRAME_3:" in prompt and "FRAME_5:" in prompt
    assert "CONTEXTUAL_MEANING:" in prompt


def test_encode_frame_downscales(make_frames):
    frame = make_frames(1)[0]
    data_url = encode_frame(frame.path, max_side=16)
    assert data_url.startswith("data:image/jpeg;base64,")


def test_parse_marker_blocks():
    records = parse_batch_response(marker_response([0, 1, 2]), batch_of(0, 1, 2))

    assert [r.frame_index for r in records] == [0, 1, 2]
    assert all(r.status == FrameStatus.OK for r in records)
    assert records[1].contextual_meaning == "Setup moment 1"
    assert records[2].timestamp == 1.0


def test_single_refused_frame_is_declined():
    response = (
        "FRAME_0:\nVISUAL_DESCRIPTION: A chef chopping onions\nCONTEXTUAL_MEANING: Preparation\n\n"
        "FRAME_1:\nI'm unable to analyze this frame.\n\n"
        "FRAME_2:\nVISUAL_DESCRIPTION: The finished dish\nCONTEXTUAL_MEANING: Payoff"
    )
    records = parse_batch_response(response, batch_of(0, 1, 2))

    assert [r.status for r in records] == [FrameStatus.OK, FrameStatus.DECLINED, FrameStatus.OK]
    assert "chef chopping onions" in records[0].description
    assert records[2].contextual_meaning == "Payoff"


def test_whole_refusal_declines_every_frame():
    records = parse_batch_response("I'm sorry, I can't analyze these images.", batch_of(0, 1, 2))
    assert [r.status for r in records] == [FrameStatus.DECLINED] * 3


def test_numbered_list_layer():
    response = "1. A dog running on grass\n2. The dog catches a frisbee\n3. Owner cheering loudly"
    records = parse_batch_response(response, batch_of(6, 7, 8))

    assert [r.status for r in records] == [FrameStatus.OK] * 3
    assert records[1].description == "The dog catches a frisbee"


def test_missing_slots_are_marked_filler():
    response = "A single long paragraph describing a busy street market full of people and stalls."
    records = parse_batch_response(response, batch_of(0, 1, 2))

    assert len(records) == 3
    assert records[0].status == FrameStatus.OK
    assert [r.status for r in records[1:]] == [FrameStatus.FILLER, FrameStatus.FILLER]
    assert "(distributed analysis for frame 2)" in records[2].description


def test_empty_response_raises():
    with pytest.raises(ParseFailure):
        parse_batch_response("   ", batch_of(0))


def test_choose_blocks_prefers_first_complete_layer():
    layers = [["a"], ["b", "c", "d"], ["e", "f"]]
    assert choose_blocks(layers, 3) == ["b", "c", "d"]
    assert choose_blocks([["a"], ["e", "f"]], 3) == ["e", "f"]


def test_contextual_meaning_fallbacks():
    assert extract_contextual_meaning("WHY: builds tension") == "builds tension"
    assert extract_contextual_meaning("nothing useful") == "Context analysis available in detailed view"


def test_analyze_returns_one_record_per_frame(config, make_gateway, make_frames):
    frames = make_frames(12)
    client = FakeOpenAI(lambda kwargs: marker_response(frame_indices(kwargs)))
    progress = ProgressTracker()
    analyzer = FrameBatchAnalyzer(config, make_gateway(client), progress)

    records = asyncio.run(analyzer.analyze(frames, job_id="req_vision"))

    assert [r.frame_index for r in records] == list(range(12))
    assert all(r.status == FrameStatus.OK for r in records)
    assert len(client.calls) == 4
    assert progress.read("req_vision")["progress"] == 70
    assert not any(os.path.exists(f.path) for f in frames)


def test_all_batches_failing_still_yields_every_frame(config, make_gateway, make_frames):
    config.MAX_RETRIES = 0
    frames = make_frames(12)
    client = FakeOpenAI(lambda kwargs: api_error(503))
    analyzer = FrameBatchAnalyzer(config, make_gateway(client))

    records = asyncio.run(analyzer.analyze(frames))

    assert [r.frame_index for r in records] == list(range(12))
    assert all(r.status == FrameStatus.FAILED for r in records)


def test_declined_batch_yields_declined_records(config, make_gateway, make_frames):
    config.MAX_RETRIES = 1
    frames = make_frames(3)
    client = FakeOpenAI(lambda kwargs: "I'm unable to analyze these images.")
    analyzer = FrameBatchAnalyzer(config, make_gateway(client))

    records = asyncio.run(analyzer.analyze(frames))

    assert [r.status for r in records] == [FrameStatus.DECLINED] * 3
    assert len(client.calls) == 2


def test_missing_frame_file_fails_only_its_batch(config, make_gateway, make_frames):
    frames = make_frames(6)
    os.remove(frames[4].path)
    client = FakeOpenAI(lambda kwargs: marker_response(frame_indices(kwargs)))
    analyzer = FrameBatchAnalyzer(config, make_gateway(client))

    records = asyncio.run(analyzer.analyze(frames))

    assert [r.status for r in records[:3]] == [FrameStatus.OK] * 3
    assert [r.status for r in records[3:]] == [FrameStatus.FAILED] * 3
