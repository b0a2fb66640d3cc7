"""
Scene segmentation over per-frame observations.

Consecutive frame records are compared by a set of weighted change
signals. Each signal looks at the lowercased model description of two
frames and votes for a cut; the votes are summed into a change score. A
cut is made when the score reaches the threshold and the running scene
already holds the minimum number of frames. A scene that reaches the
maximum length is closed regardless of score.

Everything here is pure: the same records always give the same scenes.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import FrameAnalysisRecord, Scene

logger = logging.getLogger("analysis_worker")


EMPTY_VALUES = {"", "none", "n/a", "na", "no", "no text", "no visible text", "nothing", "not visible", "-"}
_EMPTY_PHRASE = re.compile(
    r"^(?:no|none)(?: (?:visible|detected|spoken|audible|on-screen|onscreen))?"
    r"(?: (?:text|dialogue|speech|captions?|subtitles?|narration|overlays?|text overlays?))?"
    r"(?: (?:detected|visible|present|shown|heard))?$"
)

_VALUE_PATTERNS = (
    r"(?<![\w]){key}[ \t]*:[ \t]*([^\n]+)",
    r"(?<![\w]){key}[ \t]*-[ \t]*([^\n]+)",
    r"(?<![\w]){key}[ \t]+([^\n:]+)",
)


def extract_value(text: str, key: str) -> str:
    """Value following `key` on the same line, without trailing punctuation"""
    escaped = re.escape(key.rstrip(":"))
    for template in _VALUE_PATTERNS:
        match = re.search(template.format(key=escaped), text, re.IGNORECASE)
        if match and match.group(1).strip():
            return re.sub(r"[,.]$", "", match.group(1).strip())
    return ""


def have_similar_subjects(current: str, previous: str) -> bool:
    """True when more than 30% of the words are shared"""
    if not current or not previous:
        return False
    current_words = current.lower().split()
    previous_words = previous.lower().split()
    shared = set(previous_words)
    common = [w for w in current_words if w in shared]
    return len(common) / max(len(current_words), len(previous_words)) > 0.3


def clean_caption(text: str) -> str:
    text = re.sub(r"[^\w\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def is_progressive_text(current: str, previous: str) -> bool:
    """One caption is a prefix/substring of the other, as with animated captions"""
    if not current or not previous or len(current) < 3 or len(previous) < 3:
        return False
    a, b = clean_caption(current), clean_caption(previous)
    if not a or not b:
        return False
    return a in b or b in a


def normalize_value(value: str) -> str:
    value = value.strip().strip('"\'[]*_ ')
    lowered = value.lower()
    if lowered in EMPTY_VALUES or _EMPTY_PHRASE.match(lowered):
        return ""
    return value


class FrameText:
    """Lowercased view of a frame record for keyword and key/value lookups"""

    def __init__(self, record: FrameAnalysisRecord):
        self.record = record
        self.text = (record.description or "").lower()
        self._keyword_cache: Dict[str, bool] = {}

    def has(self, keyword: str) -> bool:
        if keyword not in self._keyword_cache:
            pattern = r"(?<![\w-])" + re.escape(keyword) + r"(?![\w-])"
            self._keyword_cache[keyword] = re.search(pattern, self.text) is not None
        return self._keyword_cache[keyword]

    def has_key(self, key: str) -> bool:
        return re.search(r"(?<![\w])" + re.escape(key) + r"[ \t]*:", self.text) is not None

    def value(self, key: str) -> str:
        if not self.has_key(key):
            return ""
        return normalize_value(extract_value(self.text, f"{key}:"))


class ChangeSignal(ABC):
    """One heuristic that votes for a scene boundary between two frames"""

    name = "signal"
    weight = 1.0

    @abstractmethod
    def detect(self, prev: FrameText, curr: FrameText) -> bool:
        pass


class KeywordSignal(ChangeSignal):
    """
    Keyword driven signal.

    appears: keyword present now but not before
    flips: (a, b) pairs where one frame says a and the other says b
    toggles: keyword present in exactly one of the two frames
    """

    appears: Tuple[str, ...] = ()
    flips: Tuple[Tuple[str, str], ...] = ()
    toggles: Tuple[str, ...] = ()

    def detect(self, prev: FrameText, curr: FrameText) -> bool:
        if any(curr.has(k) and not prev.has(k) for k in self.appears):
            return True
        for a, b in self.flips:
            if (curr.has(a) and prev.has(b)) or (curr.has(b) and prev.has(a)):
                return True
        return any(curr.has(k) != prev.has(k) for k in self.toggles)


def _values_differ(prev: FrameText, curr: FrameText, keys: Iterable[str]) -> bool:
    for key in keys:
        if prev.has_key(key) and curr.has_key(key):
            a, b = prev.value(key), curr.value(key)
            if a and b and not have_similar_subjects(a, b):
                return True
    return False


class SettingChange(ChangeSignal):
    name = "setting"
    weight = 3.0
    keys = ("setting", "location")

    def detect(self, prev, curr):
        return _values_differ(prev, curr, self.keys)


class SubjectChange(ChangeSignal):
    name = "subject"
    weight = 3.0
    keys = ("subjects", "objects_items", "main focus")

    def detect(self, prev, curr):
        return _values_differ(prev, curr, self.keys)


class VisualContrastChange(KeywordSignal):
    name = "visual_contrast"
    weight = 3.0
    flips = (("bright", "dark"), ("dim", "well-lit"), ("colorful", "monochrome"))
    toggles = ("black and white",)


class FramingChange(KeywordSignal):
    name = "framing"
    weight = 2.0
    appears = (
        "close-up", "wide shot", "medium shot", "overhead", "low angle",
        "high angle", "front view", "side view", "behind",
    )

    def detect(self, prev, curr):
        return super().detect(prev, curr) or _values_differ(prev, curr, ("perspective",))


class ActionChange(KeywordSignal):
    name = "action"
    weight = 2.0
    flips = (("sitting", "standing"), ("walking", "stationary"))

    def detect(self, prev, curr):
        return _values_differ(prev, curr, ("body_language", "action")) or super().detect(prev, curr)


class TextOverlayChange(ChangeSignal):
    """
    On-screen text churn. Ignored whenever either frame has dialogue, and
    captions that grow or shrink into each other count as the same text.
    """

    name = "text_overlay"
    weight = 2.0
    dialogue_keys = ("dialogue", "overlays_reactions", "setup_elements")
    text_keys = ("text_overlays", "text")

    def _first_value(self, frame: FrameText, keys: Sequence[str]) -> str:
        for key in keys:
            value = frame.value(key)
            if value:
                return value
        return ""

    def detect(self, prev, curr):
        curr_dialogue = self._first_value(curr, self.dialogue_keys)
        prev_dialogue = self._first_value(prev, self.dialogue_keys)
        if len(curr_dialogue) > 5 or len(prev_dialogue) > 5:
            return False

        if (curr_dialogue and prev_dialogue and curr_dialogue != prev_dialogue
                and not is_progressive_text(curr_dialogue, prev_dialogue)):
            return True

        curr_text = self._first_value(curr, self.text_keys)
        prev_text = self._first_value(prev, self.text_keys)
        if (curr_text and prev_text and curr_text != prev_text
                and not is_progressive_text(curr_text, prev_text)):
            return True

        # text appearing or disappearing
        return bool(curr_text) != bool(prev_text)


class NarrativeBeatChange(KeywordSignal):
    name = "narrative_beat"
    weight = 2.0
    appears = (
        "celebration", "shock", "excitement", "disappointed", "surprised", "confused",
        "discovers", "realizes", "finds", "reveals", "shows",
    )
    flips = (("happy", "sad"),)


class MovementChange(KeywordSignal):
    name = "movement"
    weight = 1.0
    appears = ("walking", "sitting", "standing", "lying", "moving")
    flips = (("still", "moving"),)


class ExpressionChange(KeywordSignal):
    name = "expression"
    weight = 1.0
    appears = ("smiling", "frowning", "laughing", "crying", "serious", "neutral")


class EnvironmentChange(KeywordSignal):
    name = "environment"
    weight = 1.0
    appears = ("bathroom", "kitchen", "bedroom", "car", "street")
    flips = (("indoor", "outdoor"),)


class FocusChange(KeywordSignal):
    name = "focus"
    weight = 1.0
    flips = (("background", "foreground"), ("person", "object"))

    def detect(self, prev, curr):
        if prev.has_key("focus") and curr.has_key("focus"):
            if prev.value("focus") != curr.value("focus"):
                return True
        return super().detect(prev, curr)


def default_signals() -> List[ChangeSignal]:
    return [
        SettingChange(),
        SubjectChange(),
        VisualContrastChange(),
        FramingChange(),
        FocusChange(),
        ActionChange(),
        TextOverlayChange(),
        NarrativeBeatChange(),
        MovementChange(),
        ExpressionChange(),
        EnvironmentChange(),
    ]


class SceneSegmenter:
    """Groups frame records into contiguous scenes"""

    def __init__(
        self,
        fps: float,
        min_seconds: float = 2.0,
        max_seconds: float = 8.0,
        threshold: float = 0.5,
        signals: Optional[List[ChangeSignal]] = None
    ):
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.fps = fps
        self.sampling_interval = 1.0 / fps
        self.min_frames = max(2, math.floor(min_seconds * fps))
        self.max_frames = max(self.min_frames, math.floor(max_seconds * fps))
        self.threshold = threshold
        self.signals = signals if signals is not None else default_signals()

    def score(self, prev: FrameAnalysisRecord, curr: FrameAnalysisRecord) -> Tuple[float, List[str]]:
        """Summed weight of the signals that fire for a pair, with their names"""
        prev_text, curr_text = FrameText(prev), FrameText(curr)
        reasons = [s.name for s in self.signals if s.detect(prev_text, curr_text)]
        total = sum(s.weight for s in self.signals if s.name in reasons)
        return total, reasons

    def segment(self, records: List[FrameAnalysisRecord]) -> List[Scene]:
        """
        Partition the records into scenes.

        Args:
            records: One record per frame, frame indices 0..N-1

        Returns:
            Ordered scenes covering every frame exactly once
        """
        ordered = sorted(records, key=lambda r: r.frame_index)
        scenes: List[Scene] = []
        start = 0
        length = 0

        def close(first: int, last: int) -> None:
            scenes.append(Scene(
                scene_number=len(scenes) + 1,
                start_frame=ordered[first].frame_index,
                end_frame=ordered[last].frame_index,
                sampling_interval=self.sampling_interval
            ))

        for i, record in enumerate(ordered):
            if length == 0:
                start, length = i, 1
                continue

            change_score, reasons = self.score(ordered[i - 1], record)
            if change_score >= self.threshold and length >= self.min_frames:
                logger.debug(f"Scene cut before frame {record.frame_index} (score {change_score}: {', '.join(reasons)})")
                close(start, i - 1)
                start, length = i, 1
            else:
                length += 1

            if length >= self.max_frames:
                logger.debug(f"Scene reached {self.max_frames} frames, closing at frame {record.frame_index}")
                close(start, i)
                length = 0

        if length:
            close(start, len(ordered) - 1)

        logger.info(
            f"Segmented {len(ordered)} frames into {len(scenes)} scenes "
            f"(min {self.min_frames}, max {self.max_frames} frames)"
        )
        return scenes
