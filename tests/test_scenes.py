import pytest

from analysis_worker.pipeline.scenes import (
    ChangeSignal, FrameText, FramingChange, SceneSegmenter, SettingChange, TextOverlayChange,
    extract_value, have_similar_subjects, is_progressive_text, normalize_value
)

from conftest import make_record

KITCHEN = "VISUAL_DESCRIPTION: a man at the counter\nSETTING: kitchen counter\nSUBJECTS: man holding a mug"
STREET = "VISUAL_DESCRIPTION: a man outside\nSETTING: busy street\nSUBJECTS: man holding a mug"


class AlwaysCut(ChangeSignal):
    name = "always"
    weight = 1.0

    def detect(self, prev, curr):
        return True


def texts(*descriptions):
    return [FrameText(make_record(i, d)) for i, d in enumerate(descriptions)]


def assert_partition(scenes, n):
    assert scenes[0].start_frame == 0
    assert scenes[-1].end_frame == n - 1
    for left, right in zip(scenes, scenes[1:]):
        assert left.end_frame + 1 == right.start_frame
    assert [s.scene_number for s in scenes] == list(range(1, len(scenes) + 1))


def test_twelve_frames_with_one_change_give_two_scenes():
    records = [make_record(i, KITCHEN if i < 4 else STREET) for i in range(12)]
    segmenter = SceneSegmenter(fps=2)

    scenes = segmenter.segment(records)

    assert [(s.start_frame, s.end_frame) for s in scenes] == [(0, 3), (4, 11)]
    assert [s.duration for s in scenes] == [2.0, 4.0]
    assert scenes[1].start_time == 2.0
    assert scenes[1].end_time == 6.0


def test_change_score_only_between_groups():
    segmenter = SceneSegmenter(fps=2)
    kitchen, street = make_record(0, KITCHEN), make_record(1, STREET)

    score, reasons = segmenter.score(kitchen, street)
    assert score >= 1
    assert "setting" in reasons
    assert segmenter.score(kitchen, make_record(1, KITCHEN)) == (0, [])


def test_segmentation_is_deterministic():
    descriptions = [KITCHEN, STREET, "close-up of a smiling face", KITCHEN] * 5
    records = [make_record(i, d) for i, d in enumerate(descriptions)]
    segmenter = SceneSegmenter(fps=2)

    assert segmenter.segment(records) == segmenter.segment(list(reversed(records)))


def test_long_static_shot_is_split_at_max_length():
    records = [make_record(i, KITCHEN) for i in range(20)]
    scenes = SceneSegmenter(fps=2, min_seconds=2, max_seconds=8).segment(records)

    assert [(s.start_frame, s.end_frame) for s in scenes] == [(0, 15), (16, 19)]


@pytest.mark.parametrize("fps", [1, 2, 4])
@pytest.mark.parametrize("n", [1, 2, 5, 13, 40])
def test_scenes_partition_and_respect_bounds(fps, n):
    segmenter = SceneSegmenter(fps=fps, signals=[AlwaysCut()])
    records = [make_record(i, f"frame {i}", fps=fps) for i in range(n)]

    scenes = segmenter.segment(records)

    assert_partition(scenes, n)
    for scene in scenes[:-1]:
        assert segmenter.min_frames <= scene.frame_count <= segmenter.max_frames
    assert scenes[-1].frame_count <= segmenter.max_frames


def test_min_frames_has_floor_of_two():
    assert SceneSegmenter(fps=0.5, min_seconds=1).min_frames == 2
    assert SceneSegmenter(fps=4, min_seconds=2, max_seconds=1).max_frames == 8


def test_invalid_fps_rejected():
    with pytest.raises(ValueError):
        SceneSegmenter(fps=0)


def test_extract_value_stays_on_line():
    text = "setting:\nsubjects: two dogs"
    assert extract_value(text, "subjects:") == "two dogs"
    assert extract_value("context: a party", "text:") == ""


def test_similar_subjects():
    assert have_similar_subjects("man holding a mug", "a man holding a red mug")
    assert not have_similar_subjects("kitchen counter", "busy street")
    # short words count towards the overlap
    assert have_similar_subjects("a cat on a mat", "a dog in a car")


def test_progressive_captions():
    assert is_progressive_text("when you finally", "when you")
    assert not is_progressive_text("hello there", "goodbye")


def test_setting_markdown_values_are_normalized():
    prev, curr = texts("**setting:** kitchen", "**setting:** kitchen")
    assert not SettingChange().detect(prev, curr)


def test_framing_change_on_new_shot_type():
    prev, curr = texts("SHOT_TYPE: wide shot of the room", "SHOT_TYPE: close-up on hands")
    assert FramingChange().detect(prev, curr)


def test_text_overlay_ignored_while_dialogue_present():
    prev, curr = texts(
        "DIALOGUE: we are almost there\nTEXT_OVERLAYS: day one",
        "DIALOGUE: we are almost there\nTEXT_OVERLAYS: day two"
    )
    assert not TextOverlayChange().detect(prev, curr)


def test_text_overlay_change_and_growth():
    signal = TextOverlayChange()
    grow_prev, grow_curr = texts("TEXT_OVERLAYS: when you", "TEXT_OVERLAYS: when you finally")
    new_prev, new_curr = texts("TEXT_OVERLAYS: none", "TEXT_OVERLAYS: SALE ENDS TODAY")

    assert not signal.detect(grow_prev, grow_curr)
    assert signal.detect(new_prev, new_curr)


def test_keyword_match_uses_word_boundaries():
    frame = FrameText(make_record(0, "the scarf is red"))
    assert not frame.has("car")
    assert FrameText(make_record(1, "a red car")).has("car")


@pytest.mark.parametrize("dialogue", ["No dialogue", "None detected", "no speech.", "No visible text"])
def test_negative_dialogue_phrasing_does_not_hide_overlay_changes(dialogue):
    prev, curr = texts(
        f"DIALOGUE: {dialogue}\nTEXT_OVERLAYS: day one",
        f"DIALOGUE: {dialogue}\nTEXT_OVERLAYS: SALE ENDS"
    )
    assert TextOverlayChange().detect(prev, curr)


def test_overlay_text_starting_with_no_is_kept():
    assert normalize_value("NO EXCUSES") == "NO EXCUSES"
    assert normalize_value("None detected") == ""
