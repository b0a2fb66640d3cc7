"""
Inference gateway.

Single choke-point for every call to the remote multimodal service. Owns
admission (serialized with a minimum spacing, or a bounded number of
parallel slots), exponential backoff, retry-after handling, refusal
detection and the retry budget.

Outcomes are a tagged union: ``Completed`` / ``StructuredOk`` for usable
responses, ``Declined`` when the model kept refusing, and ``Unparseable``
when a structured response did not validate. Transport failures that
exhaust the budget raise ``InferenceTransportError``.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, Union

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from ..config import WorkerConfig
from ..errors import InferenceDeclined, InferenceTransportError

logger = logging.getLogger("analysis_worker")


REFUSAL_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"i'?m unable to",
        r"i can'?t",
        r"i don'?t have the ability",
        r"i'm not able to",
        r"i cannot",
        r"unable to provide",
        r"can'?t analyze",
        r"unable to analyze",
        r"i'm not capable",
        r"i don'?t have access",
        r"i can'?t see",
        r"i'm unable to see",
        r"i can'?t provide",
        r"i'm not designed to",
        r"i don'?t currently have",
    )
]

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def is_refusal(text: Optional[str]) -> bool:
    """Check whether a response reads as the model declining the task"""
    if not text:
        return False
    return any(pattern.search(text) for pattern in REFUSAL_PATTERNS)


def is_unstructured_refusal(text: Optional[str]) -> bool:
    """Refusal check for JSON calls: a JSON body is never a refusal"""
    if not text:
        return False
    stripped = strip_json_fences(text)
    if stripped[:1] in ("{", "["):
        return False
    return is_refusal(text)


def strip_json_fences(text: str) -> str:
    """Remove ```json fences around a model response"""
    text = (text or "").strip()
    match = _JSON_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text


@dataclass
class RequestSpec:
    """One logical call to the inference service"""
    prompt: str = ""
    tier: str = "reasoning"
    max_tokens: int = 2000
    temperature: float = 0.3
    system: Optional[str] = None
    images: List[str] = field(default_factory=list)
    image_detail: str = "low"
    audio_path: Optional[str] = None
    json_mode: bool = False
    parallel: bool = False
    refusal_check: Optional[Callable[[Optional[str]], bool]] = None
    label: str = "inference"
    job_id: Optional[str] = None

    @property
    def is_transcription(self) -> bool:
        return self.audio_path is not None


@dataclass
class Completed:
    text: str
    attempts: int
    raw: Any = None


@dataclass
class StructuredOk:
    data: Any
    attempts: int
    raw_text: str = ""


@dataclass
class Declined:
    reason: str
    attempts: int


@dataclass
class Unparseable:
    raw_text: str
    error: str
    attempts: int


InferenceResult = Union[Completed, Declined]
StructuredResult = Union[StructuredOk, Declined, Unparseable]


def completed_text(result: InferenceResult, label: str, job_id: Optional[str] = None) -> str:
    """Text of a completed call; a refusal is raised as InferenceDeclined"""
    if isinstance(result, Declined):
        raise InferenceDeclined(
            f"{label}: declined after {result.attempts} attempts: {result.reason}",
            job_id=job_id,
            attempts=result.attempts
        )
    return result.text


def classify_error(error: Exception) -> Tuple[bool, Optional[int], bool]:
    """
    Classify an OpenAI client error.

    Returns:
        Tuple of (retryable, status_code, is_rate_limit)
    """
    if isinstance(error, openai.RateLimitError):
        return True, 429, True
    if isinstance(error, openai.APITimeoutError):
        return True, None, False
    if isinstance(error, openai.APIConnectionError):
        return True, None, False
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if status == 429 or getattr(error, "code", None) == "rate_limit_exceeded":
            return True, status, True
        if status >= 500:
            return True, status, False
        return False, status, False
    return False, None, False


def retry_after_seconds(error: Exception) -> Optional[float]:
    """Read an explicit retry-after hint from an error response, if any"""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None

    retry_after_ms = headers.get("retry-after-ms")
    if retry_after_ms is not None:
        try:
            return float(retry_after_ms) / 1000.0
        except (TypeError, ValueError):
            pass

    retry_after = headers.get("retry-after")
    if retry_after is not None:
        try:
            return float(retry_after)
        except (TypeError, ValueError):
            return None
    return None


class InferenceGateway:
    """Rate-limited, retrying front door to the OpenAI API"""

    def __init__(
        self,
        config: WorkerConfig,
        client: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config
        self._client = client
        self._sleep = sleep
        self._clock = clock
        self._serial_lock = asyncio.Lock()
        self._parallel_slots = asyncio.Semaphore(max(1, config.PARALLEL_SLOTS))
        self._last_serial_start: Optional[float] = None
        self.stats = {
            'calls': 0,
            'attempts': 0,
            'retries': 0,
            'declined': 0,
            'failed': 0
        }

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.config.OPENAI_API_KEY,
                max_retries=0,
                timeout=self.config.REQUEST_TIMEOUT_SEC
            )
        return self._client

    async def invoke(self, spec: RequestSpec) -> InferenceResult:
        """
        Run one logical call through admission control and the retry loop.

        Args:
            spec: Request description

        Returns:
            Completed with the response text, or Declined if the model kept refusing

        Raises:
            InferenceTransportError: non-retryable error or exhausted retry budget
        """
        self.stats['calls'] += 1
        if spec.parallel:
            async with self._parallel_slots:
                return await self._run_with_retries(spec, serialized=False)

        async with self._serial_lock:
            return await self._run_with_retries(spec, serialized=True)

    async def invoke_structured(self, spec: RequestSpec, model: Type[BaseModel]) -> StructuredResult:
        """
        Invoke and validate the JSON response against a pydantic model.

        Returns:
            StructuredOk, Declined or Unparseable
        """
        if spec.refusal_check is None:
            spec.refusal_check = is_unstructured_refusal

        result = await self.invoke(spec)
        if isinstance(result, Declined):
            return result

        try:
            data = model.model_validate_json(strip_json_fences(result.text))
        except ValidationError as e:
            logger.warning(f"{spec.label}: response did not match {model.__name__}: {e.error_count()} errors")
            return Unparseable(raw_text=result.text, error=str(e), attempts=result.attempts)

        return StructuredOk(data=data, attempts=result.attempts, raw_text=result.text)

    def backoff_delay(
        self,
        attempt: int,
        rate_limited: bool,
        hint: Optional[float] = None,
        previous: float = 0.0
    ) -> float:
        """Delay in seconds before retrying after failed attempt `attempt` (0-based)"""
        base_ms = self.config.RATE_LIMIT_BACKOFF_MS if rate_limited else self.config.BASE_BACKOFF_MS
        delay = base_ms * (2 ** attempt) / 1000.0
        if hint is not None:
            delay = hint + self.config.RETRY_AFTER_MARGIN_MS / 1000.0
        return max(delay, previous)

    async def _wait_for_spacing(self) -> None:
        spacing = self.config.MIN_REQUEST_SPACING_MS / 1000.0
        if self._last_serial_start is not None:
            wait = spacing - (self._clock() - self._last_serial_start)
            if wait > 0:
                await self._sleep(wait)
        self._last_serial_start = self._clock()

    async def _run_with_retries(self, spec: RequestSpec, serialized: bool) -> InferenceResult:
        max_attempts = self.config.MAX_RETRIES + 1
        refusal_check = spec.refusal_check or is_refusal
        previous_delay = 0.0

        for attempt in range(max_attempts):
            if serialized:
                await self._wait_for_spacing()
            self.stats['attempts'] += 1
            is_last = attempt == max_attempts - 1

            try:
                text, raw = await self._dispatch(spec)
            except openai.APIError as e:
                retryable, status, rate_limited = classify_error(e)
                if not retryable or is_last:
                    self.stats['failed'] += 1
                    reason = "non-retryable error" if not retryable else f"gave up after {attempt + 1} attempts"
                    raise InferenceTransportError(
                        f"{spec.label}: {reason}: {e}",
                        job_id=spec.job_id,
                        attempts=attempt + 1,
                        status_code=status
                    ) from e

                delay = self.backoff_delay(attempt, rate_limited, retry_after_seconds(e), previous_delay)
                kind = "rate limited" if rate_limited else f"transport error ({status or type(e).__name__})"
                logger.warning(f"{spec.label}: {kind}, attempt {attempt + 1}/{max_attempts}, retrying in {delay:.1f}s")
                previous_delay = delay
                self.stats['retries'] += 1
                await self._sleep(delay)
                continue

            if not spec.is_transcription and refusal_check(text):
                if is_last:
                    self.stats['declined'] += 1
                    logger.warning(f"{spec.label}: model declined after {attempt + 1} attempts")
                    return Declined(reason=(text or "")[:200], attempts=attempt + 1)

                delay = self.backoff_delay(attempt, False, None, previous_delay)
                logger.warning(f"{spec.label}: refusal detected, attempt {attempt + 1}/{max_attempts}, retrying in {delay:.1f}s")
                previous_delay = delay
                self.stats['retries'] += 1
                await self._sleep(delay)
                continue

            return Completed(text=text, attempts=attempt + 1, raw=raw)

        # max_attempts is always >= 1, the loop returns or raises
        raise InferenceTransportError(f"{spec.label}: no attempts made", job_id=spec.job_id)

    async def _dispatch(self, spec: RequestSpec) -> Tuple[str, Any]:
        """Issue a single request to the API"""
        model = self.config.model_for_tier(spec.tier)

        if spec.is_transcription:
            with open(spec.audio_path, 'rb') as audio_file:
                response = await self.client.audio.transcriptions.create(
                    model=model,
                    file=audio_file,
                    response_format="verbose_json",
                    timestamp_granularities=["segment"]
                )
            return getattr(response, 'text', '') or '', response

        messages: List[Dict[str, Any]] = []
        if spec.system:
            messages.append({"role": "system", "content": spec.system})

        if spec.images:
            content: Any = [{"type": "text", "text": spec.prompt}]
            for image_url in spec.images:
                content.append({
                    "type": "image_url",
                    "image_url": {"url": image_url, "detail": spec.image_detail}
                })
        else:
            content = spec.prompt
        messages.append({"role": "user", "content": content})

        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": spec.max_tokens,
            "temperature": spec.temperature
        }
        if spec.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        message = response.choices[0].message
        text = message.content or getattr(message, 'refusal', None) or ''
        return text, response

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
