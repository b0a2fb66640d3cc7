"""
Comprehensive analysis built on top of scenes, frame records and audio.

Every derivation here is a separate gateway call with its own canned
fallback, so one failed call never blocks the others:

    1. scene cards (batched, parallel) and hooks
    2. category, contextual analysis and content structure
    3. strategic overview
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import WorkerConfig
from ..errors import InferenceTransportError
from ..models import AnalysisPhase, AudioTranscript, FrameAnalysisRecord, FrameStatus, Scene
from ..progress import ProgressTracker
from .inference import Completed, Declined, InferenceGateway, RequestSpec, StructuredOk, Unparseable
from .scenes import FrameText
from .transcribe import audio_context_for_scene

logger = logging.getLogger("analysis_worker")


CATEGORIES = {
    'customer_story': 'hero_video',
    'case_study': 'hero_video',
    'comedic_messaging': 'reel_framework',
    'engaging_education': 'reel_framework',
    'dynamic_broll': 'reel_framework',
    'situational_creative': 'reel_framework',
    'narrated_narrative': 'reel_framework',
    'bts_interview': 'reel_framework',
}
FALLBACK_CATEGORY = 'dynamic_broll'
HOOK_TYPES = ('visual_hook', 'audio_hook', 'timing_hook', 'text_overlay')

STRATEGIST_SYSTEM = (
    "You are a professional content strategist who transforms technical video analysis "
    "into actionable creative intelligence. Your analysis should help content creators "
    "understand not just what works, but why it works and how to adapt successful "
    "patterns to their own contexts."
)


class IntentImpact(BaseModel):
    creator_intent: str = ""
    how_executed: str = ""
    viewer_impact: str = ""
    narrative_significance: str = ""


class SceneCardContent(BaseModel):
    scene_number: int
    title: str = ""
    description: str = ""
    framing: str = ""
    lighting: str = ""
    mood: str = ""
    action_movement: str = ""
    audio: str = ""
    visual_effects: str = ""
    setting_environment: str = ""
    subjects_focus: str = ""
    text_dialogue: str = ""
    intent_impact: IntentImpact = Field(default_factory=IntentImpact)


class SceneCardBatch(BaseModel):
    scenes: List[SceneCardContent]


class Hook(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    timestamp: str
    type: str = "visual_hook"
    description: str = ""
    impact: str = "medium"
    element: str = ""


class HookList(BaseModel):
    hooks: List[Hook]


class VideoCategory(BaseModel):
    category: str = Field(min_length=1, description="One of the taxonomy keys")
    confidence: float = Field(ge=0, le=1)
    reasoning: str = Field(min_length=1)
    key_indicators: List[str] = Field(default_factory=list)
    subcategory: str = "reel_framework"


class ContextualAnalysis(BaseModel):
    creator_intent: Dict[str, Any] = Field(min_length=1)
    narrative_structure: Dict[str, Any] = Field(min_length=1)
    message_delivery: Dict[str, Any] = Field(min_length=1)
    context_type: str = ""
    target_audience: str = ""
    key_insights: List[str] = Field(default_factory=list)


def _timestamp_label(seconds: float) -> str:
    return f"{seconds:.1f}s"


def _frame_lines(records: List[FrameAnalysisRecord], limit: int = 300) -> str:
    return "\n".join(
        f"Frame {r.frame_index} ({_timestamp_label(r.timestamp)}): {r.description[:limit]}"
        for r in records
    )


def _scene_records(scene: Scene, records: List[FrameAnalysisRecord]) -> List[FrameAnalysisRecord]:
    indices = set(scene.frame_indices)
    return [r for r in records if r.frame_index in indices]


def build_scene_card_prompt(
    scenes: List[Scene],
    records: List[FrameAnalysisRecord],
    transcript: AudioTranscript
) -> str:
    sections = []
    for scene in scenes:
        audio = audio_context_for_scene(scene, transcript)
        sections.append(
            f"SCENE {scene.scene_number} ({_timestamp_label(scene.start_time)} - "
            f"{_timestamp_label(scene.end_time)}, {scene.duration:.1f}s):\n"
            f"{_frame_lines(_scene_records(scene, records))}\n"
            f"AUDIO: {audio['transcription']} ({audio['priority_context']})"
        )
    scene_text = "\n\n".join(sections)

    return f"""Create a detailed scene card for each of the {len(scenes)} scenes below, based on the frame-by-frame observations and the audio for each scene.

{scene_text}

For each scene describe the framing, lighting, mood, action and movement, audio, visual effects, setting, subjects, on-screen text or dialogue, and WHY the scene exists: what the creator intends, how it is executed, what it does to the viewer and how it moves the story forward.

Respond with a single JSON object:
{{
  "scenes": [
    {{
      "scene_number": 1,
      "title": "Short descriptive title",
      "description": "What happens in this scene",
      "framing": "Shot types and camera angles",
      "lighting": "Lighting style and color mood",
      "mood": "Emotional tone and atmosphere",
      "action_movement": "What subjects are doing",
      "audio": "Dialogue, music or effects heard",
      "visual_effects": "Transitions, cuts, effects",
      "setting_environment": "Where the scene takes place",
      "subjects_focus": "Main subjects in focus",
      "text_dialogue": "On-screen text or spoken lines",
      "intent_impact": {{
        "creator_intent": "Why the creator included this scene",
        "how_executed": "Techniques used to deliver it",
        "viewer_impact": "Effect on the viewer",
        "narrative_significance": "Role in the overall story"
      }}
    }}
  ]
}}"""


def fallback_scene_card(
    scene: Scene,
    records: List[FrameAnalysisRecord],
    transcript: AudioTranscript
) -> Dict[str, Any]:
    """Card assembled from the raw frame records when the model gave nothing usable"""
    scene_records = _scene_records(scene, records)
    first = scene_records[0] if scene_records else None
    text = FrameText(first) if first else None
    audio = audio_context_for_scene(scene, transcript)

    def value(key: str, default: str) -> str:
        return (text.value(key) if text else "") or default

    card = SceneCardContent(
        scene_number=scene.scene_number,
        title=f"Scene {scene.scene_number}",
        description=first.description[:300] if first else "No frame analysis available",
        framing=value("shot_type", "Not analyzed"),
        lighting=value("lighting", "Not analyzed"),
        mood="Not analyzed",
        action_movement=value("body_language", "Not analyzed"),
        audio=audio['transcription'],
        visual_effects=value("transitions", "None detected"),
        setting_environment=value("setting", "Not analyzed"),
        subjects_focus=value("subjects", "Not analyzed"),
        text_dialogue=value("text_overlays", "None"),
        intent_impact=IntentImpact(
            creator_intent=first.contextual_meaning if first else "Not analyzed",
            how_executed="Not analyzed",
            viewer_impact="Not analyzed",
            narrative_significance="Not analyzed"
        )
    )
    return card.model_dump()


def merge_scene_card(scene: Scene, content: Dict[str, Any], audio_context: Dict[str, Any]) -> Dict[str, Any]:
    """Model content plus timing; frame ranges always come from segmentation"""
    card = dict(content)
    card.update(scene.to_dict())
    card['audio_context'] = audio_context
    return card


def extract_hooks_from_text(text: str) -> List[Dict[str, Any]]:
    """Recover hooks from free text lines that mention a timestamp"""
    hooks = []
    for line in (text or "").split("\n"):
        if 'timestamp' not in line.lower() and 'frame' not in line.lower():
            continue
        match = re.search(r"(\d+)s", line)
        if match:
            hooks.append(Hook(
                timestamp=f"{match.group(1)}s",
                type="visual_hook",
                description=line.strip(),
                impact="medium",
                element="Detected from analysis"
            ).model_dump())
    return hooks


def fallback_category(confidence: float = 0.5, reasoning: Optional[str] = None) -> Dict[str, Any]:
    return VideoCategory(
        category=FALLBACK_CATEGORY,
        confidence=confidence,
        reasoning=reasoning or "Unable to parse AI response, defaulting to dynamic b-roll",
        key_indicators=["Visual content detected"] if confidence > 0 else ["Analysis failed"],
        subcategory=CATEGORIES[FALLBACK_CATEGORY]
    ).model_dump()


def normalize_category(category: VideoCategory) -> Dict[str, Any]:
    """Coerce labels outside the taxonomy to the fallback label"""
    label = category.category.strip().lower().replace(' ', '_').replace('-', '_')
    if label not in CATEGORIES:
        logger.warning(f"Unknown category label '{category.category}', using {FALLBACK_CATEGORY}")
        label = FALLBACK_CATEGORY
    category.category = label
    category.subcategory = CATEGORIES[label]
    return category.model_dump()


def fallback_contextual_analysis() -> Dict[str, Any]:
    return ContextualAnalysis(
        creator_intent={
            'primary_intent': 'Context analysis failed',
            'how_achieved': 'Unable to analyze techniques',
            'effectiveness_factors': ['Analysis error']
        },
        narrative_structure={
            'setup': 'Unable to analyze',
            'conflict': 'Unable to analyze',
            'resolution': 'Unable to analyze',
            'storytelling_devices': []
        },
        message_delivery={
            'core_message': 'Unable to analyze',
            'delivery_method': 'Unable to analyze',
            'memorability_factors': []
        },
        context_type='unknown',
        target_audience='General audience',
        key_insights=['Contextual analysis unavailable']
    ).model_dump()


def fallback_content_structure(cards: List[Dict[str, Any]]) -> str:
    if not cards:
        return "## Content Structure\n\nNo scenes were detected."
    lines = ["## Content Structure", ""]
    first, last = cards[0], cards[-1]
    lines.append(f"**Setup:** {first.get('title') or 'Scene 1'} ({first['duration']:.1f}s)")
    if len(cards) > 2:
        middle = ", ".join(c.get('title') or f"Scene {c['scene_number']}" for c in cards[1:-1])
        lines.append(f"**Development:** {middle}")
    if len(cards) > 1:
        lines.append(f"**Payoff:** {last.get('title') or 'Final scene'} ({last['duration']:.1f}s)")
    return "\n".join(lines)


def fallback_strategic_overview(
    cards: List[Dict[str, Any]],
    category: Dict[str, Any],
    contextual: Dict[str, Any],
    hooks: List[Dict[str, Any]]
) -> str:
    intent = (contextual.get('creator_intent') or {}).get('primary_intent') or 'Entertainment/Education'
    scene_lines = "\n".join(
        f"- Scene {c['scene_number']}: {(c.get('intent_impact') or {}).get('creator_intent') or c.get('title')}"
        for c in cards
    ) or "- No scenes detected"
    hook_lines = "\n".join(f"- {h['timestamp']}: {h['description']}" for h in hooks[:5]) or "- No hooks detected"
    pacing = ", ".join(f"{c['duration']:.1f}s" for c in cards)
    moods = " -> ".join(c['mood'] for c in cards if c.get('mood'))

    return f"""## Video Analysis Overview

**Content Type:** {category.get('category', FALLBACK_CATEGORY)}
**Duration:** {len(cards)} scenes analyzed
**Primary Appeal:** {intent}

### Key Success Elements:
{scene_lines}

### Hooks:
{hook_lines}

### Replication Framework:
1. **Structure**: Follow the {len(cards)}-scene progression shown
2. **Timing**: Maintain similar pacing ({pacing})
3. **Mood Progression**: {moods or 'Not analyzed'}

*Note: Strategic analysis was limited due to processing constraints.*"""


def extract_opening_hook(records: List[FrameAnalysisRecord]) -> Optional[str]:
    """Contextual meaning of the first frame that was analyzed normally"""
    for record in sorted(records, key=lambda r: r.frame_index):
        if record.status == FrameStatus.OK:
            return record.contextual_meaning
    return None


def _scenes_summary(cards: List[Dict[str, Any]]) -> str:
    return "\n".join(
        f"Scene {c['scene_number']}: {c.get('title', '')} - {c.get('description', '')} ({c['duration']:.1f}s)"
        for c in cards
    ) or "No scenes detected"


class SynthesisStage:
    """Derives the report sections from scenes, frame records and the transcript"""

    def __init__(self, config: WorkerConfig, gateway: InferenceGateway, progress: Optional[ProgressTracker] = None):
        self.config = config
        self.gateway = gateway
        self.progress = progress

    async def run(
        self,
        records: List[FrameAnalysisRecord],
        scenes: List[Scene],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Run every derivation and collect the results.

        Returns:
            Dict with scenes, hooks, category, contextual_analysis,
            content_structure, strategic_overview and opening_hook
        """
        self._report(job_id, 85, "Generating scene cards and hooks")
        cards, hooks = await asyncio.gather(
            self.scene_cards(records, scenes, transcript, job_id),
            self.hooks(records, transcript, job_id)
        )

        self._report(job_id, 90, "Classifying content and narrative")
        category, contextual, structure = await asyncio.gather(
            self.category(cards, transcript, job_id),
            self.contextual_analysis(records, cards, transcript, job_id),
            self.content_structure(cards, transcript, job_id)
        )

        self._report(job_id, 95, "Writing strategic overview")
        overview = await self.strategic_overview(cards, hooks, category, contextual, transcript, job_id)

        self._report(job_id, 97, "Comprehensive analysis complete")
        return {
            'scenes': cards,
            'hooks': hooks,
            'category': category,
            'contextual_analysis': contextual,
            'content_structure': structure,
            'strategic_overview': overview,
            'opening_hook': extract_opening_hook(records)
        }

    async def scene_cards(
        self,
        records: List[FrameAnalysisRecord],
        scenes: List[Scene],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """One card per scene, batches of SCENE_BATCH_SIZE run in parallel"""
        if not scenes:
            return []
        size = self.config.SCENE_BATCH_SIZE
        batches = [scenes[i:i + size] for i in range(0, len(scenes), size)]
        logger.info(f"Generating {len(scenes)} scene cards in {len(batches)} batches")

        results = await asyncio.gather(
            *(self._scene_card_batch(i, batch, records, transcript, job_id) for i, batch in enumerate(batches)),
            return_exceptions=True
        )

        contents: Dict[int, Dict[str, Any]] = {}
        for batch, result in zip(batches, results):
            if isinstance(result, BaseException):
                logger.error(f"Scene card batch raised unexpectedly: {result}", exc_info=result)
                continue
            contents.update(result)

        cards = []
        for scene in scenes:
            content = contents.get(scene.scene_number) or fallback_scene_card(scene, records, transcript)
            cards.append(merge_scene_card(scene, content, audio_context_for_scene(scene, transcript)))
        return cards

    async def _scene_card_batch(
        self,
        batch_index: int,
        batch: List[Scene],
        records: List[FrameAnalysisRecord],
        transcript: AudioTranscript,
        job_id: Optional[str]
    ) -> Dict[int, Dict[str, Any]]:
        label = f"scene_cards_{batch_index + 1}"
        try:
            result = await self.gateway.invoke_structured(
                RequestSpec(
                    prompt=build_scene_card_prompt(batch, records, transcript),
                    tier="reasoning",
                    max_tokens=4000,
                    json_mode=True,
                    parallel=True,
                    label=label,
                    job_id=job_id
                ),
                SceneCardBatch
            )
        except InferenceTransportError as e:
            logger.warning(f"{label}: failed, using fallback cards: {e}")
            return {}

        if not isinstance(result, StructuredOk):
            logger.warning(f"{label}: {type(result).__name__}, using fallback cards")
            return {}

        wanted = {s.scene_number for s in batch}
        return {
            card.scene_number: card.model_dump()
            for card in result.data.scenes
            if card.scene_number in wanted
        }

    async def hooks(
        self,
        records: List[FrameAnalysisRecord],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Timestamp-anchored engagement elements"""
        prompt = f"""Identify the engagement hooks in this video: moments designed to grab or hold attention.

FRAME ANALYSIS:
{_frame_lines(records, limit=200)}

TRANSCRIPT: {transcript.text or 'No audio transcript available'}

Respond with a single JSON object:
{{
  "hooks": [
    {{
      "timestamp": "Xs",
      "type": "{'|'.join(HOOK_TYPES)}",
      "description": "What happens and why it hooks the viewer",
      "impact": "high|medium|low",
      "element": "The specific visual, audio or text element"
    }}
  ]
}}"""
        try:
            result = await self.gateway.invoke_structured(
                RequestSpec(
                    prompt=prompt,
                    tier="reasoning",
                    max_tokens=1000,
                    temperature=0.3,
                    json_mode=True,
                    label="hooks",
                    job_id=job_id
                ),
                HookList
            )
        except InferenceTransportError as e:
            logger.warning(f"Hook extraction failed for job {job_id}: {e}")
            return []

        if isinstance(result, StructuredOk):
            hooks = [h.model_dump() for h in result.data.hooks]
        elif isinstance(result, Unparseable):
            hooks = extract_hooks_from_text(result.raw_text)
            logger.warning(f"Hook response unparseable for job {job_id}, recovered {len(hooks)} from text")
        else:
            hooks = []

        logger.info(f"Extracted {len(hooks)} hooks for job {job_id}")
        return hooks

    async def category(
        self,
        cards: List[Dict[str, Any]],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Classify the video into the closed content taxonomy"""
        prompt = f"""Classify this video into exactly one content category.

HERO VIDEOS:
- customer_story: a real customer describes their experience and results
- case_study: a structured walkthrough of a problem, solution and measurable outcome

REEL FRAMEWORKS:
- comedic_messaging: humor, skits or relatable situations carrying a message
- engaging_education: teaching a concept, tip or how-to in an engaging way
- dynamic_broll: fast visual sequences, product or lifestyle footage with little narration
- situational_creative: a staged scenario or creative premise built around a situation
- narrated_narrative: a voice-over telling a story over footage
- bts_interview: behind the scenes footage or an interview format

SCENES:
{_scenes_summary(cards)}

TRANSCRIPT: {transcript.text or 'No audio transcript available'}

Respond with a single JSON object:
{{
  "category": "one of the category keys above",
  "confidence": 0.0,
  "reasoning": "Why this category fits",
  "key_indicators": ["indicator1", "indicator2"],
  "subcategory": "hero_video|reel_framework"
}}"""
        try:
            result = await self.gateway.invoke_structured(
                RequestSpec(
                    prompt=prompt,
                    tier="reasoning",
                    max_tokens=500,
                    temperature=0.2,
                    json_mode=True,
                    label="category",
                    job_id=job_id
                ),
                VideoCategory
            )
        except InferenceTransportError as e:
            logger.warning(f"Categorization failed for job {job_id}: {e}")
            return fallback_category(0.0, f"Error during categorization: {e}")

        if isinstance(result, StructuredOk):
            category = normalize_category(result.data)
            logger.info(f"Job {job_id} categorized as {category['category']} ({category['confidence']:.0%})")
            return category

        logger.warning(f"Category response unusable for job {job_id} ({type(result).__name__})")
        return fallback_category()

    async def contextual_analysis(
        self,
        records: List[FrameAnalysisRecord],
        cards: List[Dict[str, Any]],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Intent, narrative structure and message delivery"""
        prompt = f"""Analyze this video's deeper context, narrative and messaging. Look beyond surface-level content to understand what the creator intends, how they achieve it, how the story is structured and how the message is delivered.

TRANSCRIPT: {transcript.text or 'No audio transcript available'}

SCENES SUMMARY:
{_scenes_summary(cards)}

VISUAL PROGRESSION:
{_frame_lines(records[:8], limit=150)}

Respond with a single JSON object:
{{
  "creator_intent": {{"primary_intent": "", "how_achieved": "", "effectiveness_factors": []}},
  "narrative_structure": {{"setup": "", "conflict": "", "resolution": "", "storytelling_devices": []}},
  "message_delivery": {{"core_message": "", "delivery_method": "", "memorability_factors": []}},
  "context_type": "humor|comparison|tutorial|story|commentary|parody",
  "target_audience": "",
  "key_insights": []
}}"""
        try:
            result = await self.gateway.invoke_structured(
                RequestSpec(
                    prompt=prompt,
                    tier="reasoning",
                    max_tokens=1500,
                    temperature=0.3,
                    json_mode=True,
                    label="contextual_analysis",
                    job_id=job_id
                ),
                ContextualAnalysis
            )
        except InferenceTransportError as e:
            logger.warning(f"Contextual analysis failed for job {job_id}: {e}")
            return fallback_contextual_analysis()

        if isinstance(result, StructuredOk):
            return result.data.model_dump()

        logger.warning(f"Contextual analysis unusable for job {job_id} ({type(result).__name__})")
        return fallback_contextual_analysis()

    async def content_structure(
        self,
        cards: List[Dict[str, Any]],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> str:
        """Short markdown narrative of setup, development and payoff"""
        prompt = f"""Describe the content structure of this video as short markdown with three headed sections: Setup, Development and Payoff. Reference scene numbers and timings.

SCENES:
{_scenes_summary(cards)}

TRANSCRIPT: {transcript.text or 'No audio transcript available'}"""
        return await self._markdown(
            RequestSpec(
                prompt=prompt,
                tier="reasoning",
                max_tokens=800,
                temperature=0.5,
                label="content_structure",
                job_id=job_id
            ),
            lambda: fallback_content_structure(cards)
        )

    async def strategic_overview(
        self,
        cards: List[Dict[str, Any]],
        hooks: List[Dict[str, Any]],
        category: Dict[str, Any],
        contextual: Dict[str, Any],
        transcript: AudioTranscript,
        job_id: Optional[str] = None
    ) -> str:
        """Markdown strategy document synthesizing every other section"""
        scene_lines = "\n".join(
            f"Scene {c['scene_number']}: {c.get('title', '')} ({c['duration']:.1f}s)\n"
            f"- Description: {c.get('description', '')}\n"
            f"- Mood: {c.get('mood') or 'Not specified'}\n"
            f"- Intent: {(c.get('intent_impact') or {}).get('creator_intent') or 'Not specified'}\n"
            f"- Execution: {(c.get('intent_impact') or {}).get('how_executed') or 'Not specified'}\n"
            f"- Impact: {(c.get('intent_impact') or {}).get('viewer_impact') or 'Not specified'}\n"
            f"- Text Content: {c.get('text_dialogue') or 'None'}"
            for c in cards
        )
        hook_lines = "\n".join(f"- {h['timestamp']} [{h['type']}/{h['impact']}]: {h['description']}" for h in hooks)
        prompt = f"""You are analyzing this video to identify content patterns and provide replication frameworks.

SCENE-BY-SCENE DATA:
{scene_lines or 'No scenes detected'}

HOOKS:
{hook_lines or 'None detected'}

AUDIO CONTEXT:
{transcript.summary or transcript.text or 'No dialogue available'}

CONTENT CATEGORY: {category.get('category')}
CONFIDENCE: {round(float(category.get('confidence', 0)) * 100)}%

CONTEXTUAL INSIGHTS:
- Creator Intent: {(contextual.get('creator_intent') or {}).get('primary_intent') or 'Not analyzed'}
- Target Audience: {contextual.get('target_audience') or 'General'}
- Core Message: {(contextual.get('message_delivery') or {}).get('core_message') or 'Not specified'}

Write a strategic content document in markdown with these sections:
## Video Overview
## Strategic Breakdown (Why It Works, Success Formula, Universal Principles, Technical Requirements)
## Replication Insights (Implementation Framework, Adaptability Guidelines, Resource Scaling)

Focus on WHY techniques work, not just WHAT is happening."""
        return await self._markdown(
            RequestSpec(
                prompt=prompt,
                system=STRATEGIST_SYSTEM,
                tier="reasoning",
                max_tokens=2000,
                temperature=0.7,
                label="strategic_overview",
                job_id=job_id
            ),
            lambda: fallback_strategic_overview(cards, category, contextual, hooks)
        )

    async def _markdown(self, spec: RequestSpec, fallback) -> str:
        try:
            result = await self.gateway.invoke(spec)
        except InferenceTransportError as e:
            logger.warning(f"{spec.label} failed for job {spec.job_id}: {e}")
            return fallback()

        if isinstance(result, Declined) or not (isinstance(result, Completed) and result.text.strip()):
            logger.warning(f"{spec.label} unusable for job {spec.job_id}, using template")
            return fallback()
        return result.text.strip()

    def _report(self, job_id: Optional[str], percent: int, message: str) -> None:
        if self.progress is None or job_id is None:
            return
        self.progress.update(job_id, AnalysisPhase.SYNTHESIS.value, percent, message)
