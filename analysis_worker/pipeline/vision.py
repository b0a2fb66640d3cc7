import asyncio
import base64
import io
import logging
import os
import re
import time
from typing import Dict, List, Optional, Tuple

from PIL import Image

from ..config import WorkerConfig
from ..errors import InferenceDeclined, InferenceTransportError, ParseFailure
from ..models import Frame, FrameAnalysisRecord, FrameStatus, AnalysisPhase
from ..progress import ProgressTracker
from .inference import InferenceGateway, RequestSpec, completed_text, is_refusal

logger = logging.getLogger("analysis_worker")


FRAME_FIELDS = [
    ("VISUAL_DESCRIPTION", "Describe what you see - people, objects, setting, actions"),
    ("SETTING", "Where this takes place (room, location, indoor/outdoor)"),
    ("SUBJECTS", "Main subjects or focus of the frame"),
    ("SHOT_TYPE", "Framing and camera angle (close-up, medium shot, wide shot, overhead, ...)"),
    ("LIGHTING", "Lighting and color mode (bright, dark, colorful, black and white, ...)"),
    ("OBJECTS_ITEMS", "List visible objects, props, or items and their relevance"),
    ("BODY_LANGUAGE", "Describe facial expressions, gestures, and posture"),
    ("DIALOGUE", "Speech captions or narration subtitles of someone talking, or none"),
    ("TEXT_OVERLAYS", "Any other visible text, captions, or graphic overlays, or none"),
    ("ENGAGEMENT_ELEMENTS", "Visual hooks, reactions, or elements designed to capture attention"),
    ("STORY_FUNCTION", "How this frame contributes to setup, development, or payoff"),
    ("TRANSITIONS", "Any visual transitions or effects between scenes"),
    ("CONTEXTUAL_MEANING", "What story or message is being communicated"),
]

FRAME_MARKER = re.compile(r"FRAME_\d+:")
_NUMBERED_START = re.compile(r"^\d+\.")
_NUMBERED_SPLIT = re.compile(r"\n(?=\d+\.)")
_CONTEXTUAL_MEANING = re.compile(r"CONTEXTUAL_MEANING:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_CONTEXT_LINE = re.compile(r"(?:WHY:|IMPACT:|PURPOSE:|CONTEXT:)")

DEFAULT_CONTEXT = "Context analysis available in detailed view"
DECLINED_CONTEXT = "Analysis declined by AI model"
FAILED_CONTEXT = "Context analysis unavailable"
FILLER_CONTEXT = "Context analysis distributed from batch response"


def build_batch_prompt(batch: List[Frame]) -> str:
    """Prompt asking for one FRAME_<index>: block per frame"""
    template = "\n".join(f"{key}: [{hint}]" for key, hint in FRAME_FIELDS)
    per_frame = "\n\n".join(f"FRAME_{frame.index}:\n{template}" for frame in batch)
    return f"""Analyze these {len(batch)} video frames to understand the visual storytelling and content structure. Focus on what makes this content engaging and effective.

ANALYSIS FOCUS:
1. VISUAL DESCRIPTION: Describe what you see in each frame - people, objects, settings, and actions
2. STORYTELLING ELEMENTS: Identify setup, development, and payoff moments
3. ENGAGEMENT TACTICS: Note visual hooks, transitions, and audience engagement techniques
4. TEXT CONTENT: Read and transcribe any visible text, captions, or overlays
5. NARRATIVE FLOW: How does each frame contribute to the overall story or message?

The images are attached in the same order as the frames below. For each frame, provide analysis in this format:

{per_frame}

Please provide clear, professional analysis focusing on the content creation and storytelling techniques used in these frames."""


def encode_frame(path: str, max_side: int = 768) -> str:
    """Downscale a frame and return it as a JPEG data URL"""
    with Image.open(path) as img:
        img = img.convert("RGB")
        img.thumbnail((max_side, max_side))
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=85)
    encoded = base64.b64encode(buffer.getvalue()).decode('utf-8')
    return f"data:image/jpeg;base64,{encoded}"


def is_batch_refusal(text: Optional[str]) -> bool:
    """A batch response is only a refusal as a whole when it has no per-frame markers"""
    if not text:
        return False
    return not FRAME_MARKER.search(text) and is_refusal(text)


def _looks_structured(block: str) -> bool:
    upper = block.upper()
    return any(f"{key}:" in upper for key, _ in FRAME_FIELDS)


def extract_contextual_meaning(analysis: str) -> str:
    """Pull the CONTEXTUAL_MEANING line, or the first WHY/IMPACT/PURPOSE/CONTEXT line"""
    match = _CONTEXTUAL_MEANING.search(analysis)
    if match and match.group(1).strip():
        return match.group(1).strip()

    for line in analysis.split("\n"):
        if _CONTEXT_LINE.search(line):
            parts = _CONTEXT_LINE.split(line, maxsplit=1)
            if len(parts) > 1 and parts[1].strip():
                return parts[1].strip()
            break

    return DEFAULT_CONTEXT


def split_response(response: str) -> List[List[str]]:
    """Candidate block lists, one per parsing layer, in preference order"""
    layers: List[List[str]] = []
    stripped = response.strip()

    # 1. FRAME_<n>: markers
    if FRAME_MARKER.search(response):
        layers.append([b.strip() for b in FRAME_MARKER.split(response)[1:] if b.strip()])

    # 2. numbered list
    if _NUMBERED_START.match(stripped):
        blocks = [re.sub(r"^\d+\.\s*", "", b).strip() for b in _NUMBERED_SPLIT.split(stripped)]
        layers.append([b for b in blocks if b])

    # 3. paragraphs
    if "\n\n" in response:
        layers.append([p.strip() for p in response.split("\n\n") if len(p.strip()) > 10])

    # 4. entire response
    if stripped:
        layers.append([stripped])

    return layers


def choose_blocks(layers: List[List[str]], batch_size: int) -> List[str]:
    """First layer with enough blocks, otherwise the layer that got furthest"""
    best: List[str] = []
    for blocks in layers:
        if len(blocks) >= batch_size:
            return blocks[:batch_size]
        if len(blocks) > len(best):
            best = blocks
    return best


def parse_batch_response(response: str, batch: List[Frame]) -> List[FrameAnalysisRecord]:
    """
    Map a multi-frame response onto one record per frame of the batch.

    Args:
        response: Raw model text
        batch: Frames the response describes, in prompt order

    Returns:
        One record per frame, in batch order

    Raises:
        ParseFailure: response is empty
    """
    if not response or not response.strip():
        raise ParseFailure("Empty batch response")

    if is_batch_refusal(response):
        logger.warning(f"Batch response for frames {[f.index for f in batch]} is a refusal")
        return [declined_record(frame, "Content analysis was declined") for frame in batch]

    blocks = choose_blocks(split_response(response), len(batch))
    records: List[FrameAnalysisRecord] = []

    for frame, block in zip(batch, blocks):
        if is_refusal(block) and not _looks_structured(block):
            logger.warning(f"Frame {frame.index} analysis is a refusal")
            records.append(declined_record(frame, block[:200]))
            continue

        if len(block) < 10:
            block = f"Frame {frame.index}: Brief visual analysis - {block}"

        records.append(FrameAnalysisRecord(
            frame_index=frame.index,
            timestamp=frame.timestamp,
            description=block,
            contextual_meaning=extract_contextual_meaning(block),
            status=FrameStatus.OK
        ))

    # Fill the slots the layers could not account for
    remaining = batch[len(records):]
    if remaining:
        logger.warning(f"Parsed {len(records)}/{len(batch)} frames, filling {len(remaining)} from batch text")
    for frame in remaining:
        if len(response) > 50:
            base = response[:500] if len(response) > 200 else response
            description = f"{base} (distributed analysis for frame {frame.index})"
            context = FILLER_CONTEXT
        else:
            description = f"Analysis parsing incomplete for frame {frame.index} - AI response format unexpected"
            context = FAILED_CONTEXT
        records.append(FrameAnalysisRecord(
            frame_index=frame.index,
            timestamp=frame.timestamp,
            description=description,
            contextual_meaning=context,
            status=FrameStatus.FILLER
        ))

    return records


def declined_record(frame: Frame, reason: str) -> FrameAnalysisRecord:
    return FrameAnalysisRecord(
        frame_index=frame.index,
        timestamp=frame.timestamp,
        description=f"AI model unable to analyze frame {frame.index}: {reason}",
        contextual_meaning=DECLINED_CONTEXT,
        status=FrameStatus.DECLINED
    )


def failed_record(frame: Frame, error: str) -> FrameAnalysisRecord:
    return FrameAnalysisRecord(
        frame_index=frame.index,
        timestamp=frame.timestamp,
        description=f"Analysis failed for frame {frame.index}: {error}",
        contextual_meaning=FAILED_CONTEXT,
        status=FrameStatus.FAILED
    )


class FrameBatchAnalyzer:
    """Runs every frame batch concurrently through the inference gateway"""

    def __init__(
        self,
        config: WorkerConfig,
        gateway: InferenceGateway,
        progress: Optional[ProgressTracker] = None,
        delete_frames: bool = True
    ):
        self.config = config
        self.gateway = gateway
        self.progress = progress
        self.delete_frames = delete_frames

    def make_batches(self, frames: List[Frame]) -> List[List[Frame]]:
        size = self.config.FRAME_BATCH_SIZE
        return [frames[i:i + size] for i in range(0, len(frames), size)]

    async def analyze(self, frames: List[Frame], job_id: Optional[str] = None) -> List[FrameAnalysisRecord]:
        """
        Analyze all frames, one record per frame in index order.

        Batch failures are absorbed as failed or declined placeholder records.
        """
        if not frames:
            return []

        start_time = time.time()
        batches = self.make_batches(frames)
        total = len(batches)
        completed = 0
        logger.info(f"Analyzing {len(frames)} frames in {total} batches of up to {self.config.FRAME_BATCH_SIZE}")

        async def run_batch(batch_index: int, batch: List[Frame]) -> Tuple[int, List[FrameAnalysisRecord]]:
            nonlocal completed
            try:
                return batch_index, await self._analyze_batch(batch_index, batch, job_id)
            finally:
                completed += 1
                if self.delete_frames:
                    self._delete_frame_files(batch)
                self._report_progress(job_id, completed, total)

        results = await asyncio.gather(
            *(run_batch(i, batch) for i, batch in enumerate(batches)),
            return_exceptions=True
        )

        by_batch: Dict[int, List[FrameAnalysisRecord]] = {}
        for batch_index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error(f"Batch {batch_index + 1}/{total} raised unexpectedly: {result}", exc_info=result)
                by_batch[batch_index] = [failed_record(f, str(result)) for f in batches[batch_index]]
            else:
                index, records = result
                by_batch[index] = records

        records = [record for index in sorted(by_batch) for record in by_batch[index]]
        records.sort(key=lambda r: r.frame_index)

        counts = {status.value: 0 for status in FrameStatus}
        for record in records:
            counts[record.status.value] += 1
        logger.info(f"Frame analysis finished in {time.time() - start_time:.1f}s: {counts}")
        return records

    async def _analyze_batch(self, batch_index: int, batch: List[Frame], job_id: Optional[str]) -> List[FrameAnalysisRecord]:
        label = f"batch_{batch_index + 1}_frames_{'-'.join(str(f.index) for f in batch)}"
        try:
            images = [encode_frame(f.path, self.config.FRAME_MAX_SIDE) for f in batch]
            spec = RequestSpec(
                prompt=build_batch_prompt(batch),
                tier="vision",
                max_tokens=12000,
                temperature=0.3,
                images=images,
                parallel=True,
                refusal_check=is_batch_refusal,
                label=label,
                job_id=job_id
            )
            result = await self.gateway.invoke(spec)
            return parse_batch_response(completed_text(result, label, job_id), batch)

        except InferenceDeclined as e:
            logger.warning(f"{label}: declined after {e.attempts} attempts")
            return [declined_record(f, "Content analysis was declined") for f in batch]
        except (InferenceTransportError, ParseFailure, OSError) as e:
            logger.warning(f"{label}: failed, substituting placeholders: {e}")
            return [failed_record(f, str(e)) for f in batch]

    def _report_progress(self, job_id: Optional[str], completed: int, total: int) -> None:
        if self.progress is None or job_id is None:
            return
        percent = 10 + round(completed / total * 60)
        self.progress.update(
            job_id,
            AnalysisPhase.FRAME_ANALYSIS.value,
            percent,
            f"Analyzed {completed}/{total} frame batches",
            {'completed_batches': completed, 'total_batches': total}
        )

    def _delete_frame_files(self, batch: List[Frame]) -> None:
        for frame in batch:
            try:
                os.remove(frame.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete frame {frame.path}: {e}")
