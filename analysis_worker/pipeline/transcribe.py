import logging
from typing import List, Dict, Any, Optional, Tuple
from pydantic import BaseModel, Field

from ..models import AudioTranscript, TranscriptSegment, Scene
from .inference import InferenceGateway, RequestSpec, StructuredOk

logger = logging.getLogger("analysis_worker")


class DialogueSegment(BaseModel):
    start: float = 0.0
    end: float = 0.0
    text: str = ""
    type: str = Field(default="narration", description="narration, conversation or voiceover")


class DialogueTrack(BaseModel):
    content: str = Field(default="", description="Only spoken words and narration")
    segments: List[DialogueSegment] = Field(default_factory=list)
    primary_context: str = Field(default="", description="Main message from the spoken content")
    is_empty: bool = True


class MusicTrack(BaseModel):
    content: str = Field(default="", description="Only sung lyrics")
    song_title: str = ""
    mood: str = ""
    role: str = Field(default="", description="background, foreground or thematic")
    is_empty: bool = True


class SoundDesign(BaseModel):
    effects: str = ""
    music_instruments: str = ""
    audio_quality: str = ""


class AudioSeparation(BaseModel):
    """Dialogue / music / sound-design judgment over a transcript"""
    audio_type: str = Field(default="mixed", description="dialogue, music or mixed")
    confidence: float = Field(default=0.5, ge=0, le=1)
    dialogue: DialogueTrack = Field(default_factory=DialogueTrack)
    music_lyrics: MusicTrack = Field(default_factory=MusicTrack)
    sound_design: SoundDesign = Field(default_factory=SoundDesign)
    context_priority: str = Field(default="mixed", description="dialogue, music or mixed")
    reasoning: str = ""
    audio_summary: str = ""


SEPARATION_PROMPT = """CRITICAL: Analyze this audio transcript and distinguish between SPOKEN DIALOGUE and SUNG MUSIC LYRICS.

FULL TRANSCRIPT: "{text}"

TIMESTAMPED SEGMENTS:
{segments}

MUSIC DETECTION CLUES:
- Repetitive phrases or choruses
- Rhyming patterns
- Melodic/rhythmic delivery
- Song titles or famous lyrics
- Singing voice vs speaking voice

DIALOGUE DETECTION CLUES:
- Conversational tone
- Natural speech patterns
- Narration or voice-over
- Direct communication
- Explanatory content

Respond with a single JSON object with these keys:
{{
  "audio_type": "dialogue|music|mixed",
  "confidence": 0.95,
  "dialogue": {{"content": "", "segments": [{{"start": 0, "end": 5, "text": "", "type": "narration|conversation|voiceover"}}], "primary_context": "", "is_empty": false}},
  "music_lyrics": {{"content": "", "song_title": "", "mood": "", "role": "background|foreground|thematic", "is_empty": true}},
  "sound_design": {{"effects": "", "music_instruments": "", "audio_quality": "clear|muffled|background"}},
  "context_priority": "dialogue|music|mixed",
  "reasoning": "",
  "audio_summary": "what the audio tells us about the video's purpose"
}}

Be very precise - if it sounds like singing or is from a known song, classify as music lyrics."""


def fallback_separation(text: str) -> AudioSeparation:
    """Separation used when the model response is declined or unusable"""
    return AudioSeparation(
        audio_type="mixed",
        confidence=0.5,
        dialogue=DialogueTrack(
            content=text,
            primary_context="Audio separation failed - full transcript available",
            is_empty=not text.strip()
        ),
        music_lyrics=MusicTrack(mood="Unknown", is_empty=True),
        sound_design=SoundDesign(effects="Unknown", audio_quality="Unknown"),
        context_priority="dialogue",
        reasoning="Fallback due to parsing error",
        audio_summary=f"Full transcript: {text}"
    )


def _segment_value(segment: Any, name: str, default: Any) -> Any:
    if isinstance(segment, dict):
        return segment.get(name, default)
    return getattr(segment, name, default)


async def transcribe_audio(gateway: InferenceGateway, audio_path: str, job_id: Optional[str] = None) -> Tuple[List[TranscriptSegment], str]:
    """
    Transcribe audio with Whisper and return segments

    Returns:
        Tuple of (segments, full_text)
    """
    logger.info(f"Transcribing audio for job {job_id}: {audio_path}")

    result = await gateway.invoke(RequestSpec(
        audio_path=audio_path,
        tier="transcription",
        label="transcription",
        job_id=job_id
    ))
    transcript = result.raw
    text = (result.text or "").strip()

    segments = []
    raw_segments = getattr(transcript, 'segments', None) or []
    for segment in raw_segments:
        segments.append(TranscriptSegment(
            start=float(_segment_value(segment, 'start', 0.0) or 0.0),
            end=float(_segment_value(segment, 'end', 0.0) or 0.0),
            text=str(_segment_value(segment, 'text', '')).strip()
        ))
    if not segments and text:
        # Fallback if no segments
        segments.append(TranscriptSegment(
            start=0.0,
            end=float(getattr(transcript, 'duration', 0.0) or 0.0),
            text=text
        ))

    logger.info(f"Transcription completed for job {job_id}: {len(segments)} segments")
    return segments, text


async def separate_audio(
    gateway: InferenceGateway,
    text: str,
    segments: List[TranscriptSegment],
    job_id: Optional[str] = None
) -> AudioSeparation:
    """Classify the transcript into dialogue, lyrics and sound design"""
    segment_lines = "\n".join(
        f'{s.start:.1f}s-{s.end:.1f}s: "{s.text}"' for s in segments
    ) or "No segments available"

    result = await gateway.invoke_structured(
        RequestSpec(
            prompt=SEPARATION_PROMPT.format(text=text, segments=segment_lines),
            tier="reasoning",
            max_tokens=1500,
            json_mode=True,
            label="audio_separation",
            job_id=job_id
        ),
        AudioSeparation
    )

    if isinstance(result, StructuredOk):
        separation = result.data
        separation.audio_type = separation.audio_type.lower()
        logger.info(f"Audio separation for job {job_id}: {separation.audio_type} ({separation.confidence:.0%})")
        return separation

    logger.warning(f"Audio separation unavailable for job {job_id} ({type(result).__name__}), using fallback")
    return fallback_separation(text)


def build_audio_summary(separation: AudioSeparation) -> str:
    """Human readable digest of the separation for downstream prompts"""
    dialogue = separation.dialogue
    music = separation.music_lyrics
    sound = separation.sound_design
    return f"""AUDIO CONTEXT ANALYSIS:

AUDIO TYPE: {separation.audio_type.upper()} ({round(separation.confidence * 100)}% confidence)
REASONING: {separation.reasoning or 'Not provided'}

PRIMARY DIALOGUE: {'None detected' if dialogue.is_empty else dialogue.content or 'None detected'}
Context Priority: {separation.context_priority or 'Unknown'}
Key Message: {dialogue.primary_context or 'Not available'}

MUSIC/LYRICS: {'None detected' if music.is_empty else music.content or 'None detected'}
Song Title: {music.song_title or 'Unknown'}
Musical Mood: {music.mood or 'Not detected'}
Music Role: {music.role or 'Unknown'}

SOUND DESIGN: {sound.effects or 'Standard audio'}
Audio Quality: {sound.audio_quality or 'Unknown'}
Instruments: {sound.music_instruments or 'None detected'}

OVERALL CONTEXT: {separation.audio_summary or 'Audio provides context through transcript'}"""


async def analyze_audio(gateway: InferenceGateway, audio_path: Optional[str], job_id: Optional[str] = None) -> AudioTranscript:
    """
    Transcribe the audio track and separate dialogue from music.

    Transcription transport errors propagate; separation degrades to a fallback.
    """
    if not audio_path:
        return AudioTranscript(has_audio=False, summary="No audio track in source video")

    segments, text = await transcribe_audio(gateway, audio_path, job_id)
    if not text:
        logger.info(f"No speech or lyrics detected for job {job_id}")
        return AudioTranscript(segments=segments, text="", summary="No speech or lyrics detected")

    separation = await separate_audio(gateway, text, segments, job_id)
    return AudioTranscript(
        segments=segments,
        text=text,
        separation=separation.model_dump(),
        summary=build_audio_summary(separation)
    )


def audio_context_for_scene(scene: Scene, transcript: AudioTranscript) -> Dict[str, Any]:
    """Transcript segments overlapping a scene, with a dialogue / music judgment"""
    if not transcript.segments:
        return {
            'transcription': 'No audio detected for this scene',
            'contextual_analysis': transcript.summary or 'No audio analysis available',
            'audio_type': 'none',
            'priority_context': 'LOW - No audio'
        }

    start, end = scene.start_time, scene.end_time
    relevant = [
        s for s in transcript.segments
        if (start <= s.start <= end) or (start <= s.end <= end) or (s.start <= start and s.end >= end)
    ]
    separation = transcript.separation or {}

    if not relevant:
        return {
            'transcription': 'No audio detected for this scene',
            'contextual_analysis': separation.get('audio_summary') or 'Limited audio context',
            'audio_type': 'none',
            'priority_context': 'LOW - No audio'
        }

    scene_text = " ".join(s.text for s in relevant).strip()
    probe = scene_text[:50]
    dialogue = separation.get('dialogue') or {}
    music = separation.get('music_lyrics') or {}

    if dialogue.get('content') and probe and probe in dialogue['content']:
        audio_type = 'dialogue'
        meaning = dialogue.get('primary_context') or 'Dialogue provides key context'
    elif music.get('content') and probe and probe in music['content']:
        audio_type = 'music'
        meaning = music.get('role') or 'Music supports the mood'
    else:
        audio_type = 'mixed'
        meaning = separation.get('audio_summary') or 'Mixed audio content'

    return {
        'transcription': scene_text,
        'contextual_analysis': meaning,
        'audio_type': audio_type,
        'priority_context': 'HIGH - Contains spoken dialogue' if audio_type == 'dialogue' else 'MEDIUM - Music/effects only'
    }
