"""Service for tuning generation parameters from user feedback."""
import asyncio
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import suppress
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from vitalai.services.key_value_store import KeyValueStore, NullKeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY_PARAMETERS = "vital_ai_llm_parameters"
STORAGE_KEY_FEEDBACK = "vital_ai_llm_feedback"

DEFAULT_KEY = "default"
RATINGS = ("positive", "negative")

LOW_POSITIVE_RATIO = 0.4
HIGH_POSITIVE_RATIO = 0.8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_feedback_id() -> str:
    return f"feedback-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters sent with a generation request."""
    temperature: float
    top_p: float
    top_k: int
    max_output_tokens: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationParameters":
        # Older payloads used camelCase keys
        return cls(
            temperature=float(data.get("temperature")),
            top_p=float(data.get("top_p", data.get("topP"))),
            top_k=int(data.get("top_k", data.get("topK"))),
            max_output_tokens=int(data.get("max_output_tokens", data.get("maxOutputTokens"))),
        )


@dataclass(frozen=True)
class FeedbackEvent:
    """A user's rating of one generated response."""
    response_id: str
    response_type: str
    rating: Optional[str] = None
    comment: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=new_feedback_id)

    def __post_init__(self):
        if self.rating is not None and self.rating not in RATINGS:
            raise ValueError(f"Invalid rating '{self.rating}', expected one of {RATINGS} or None")
        object.__setattr__(self, "timestamp", _parse_timestamp(self.timestamp))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "response_id": self.response_id,
            "response_type": self.response_type,
            "rating": self.rating,
            "comment": self.comment,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackEvent":
        return cls(
            id=data.get("id") or new_feedback_id(),
            response_id=data["response_id"],
            response_type=data["response_type"],
            rating=data.get("rating"),
            comment=data.get("comment") or "",
            context=data.get("context") or {},
            timestamp=data["timestamp"],
        )


DEFAULT_PARAMETERS: Dict[str, GenerationParameters] = {
    "indian-cuisine": GenerationParameters(temperature=0.6, top_p=0.9, top_k=40, max_output_tokens=2048),
    # Recipes built from a fixed ingredient list need to stay precise
    "ingredient-based": GenerationParameters(temperature=0.4, top_p=0.85, top_k=30, max_output_tokens=2048),
    "mental-health": GenerationParameters(temperature=0.3, top_p=0.85, top_k=20, max_output_tokens=1024),
    "fitness-plan": GenerationParameters(temperature=0.3, top_p=0.8, top_k=40, max_output_tokens=1500),
    DEFAULT_KEY: GenerationParameters(temperature=0.7, top_p=0.9, top_k=40, max_output_tokens=1024),
}


def adjust_parameters(params: GenerationParameters, positive_ratio: float) -> GenerationParameters:
    """
    Apply one tuning step for a category.

    Below 0.4 positive the output gets more conservative, above 0.8 it is
    allowed to get more creative. top_k and max_output_tokens never change.
    """
    if positive_ratio < LOW_POSITIVE_RATIO:
        return replace(
            params,
            temperature=round(max(0.1, params.temperature - 0.1), 4),
            top_p=round(max(0.5, params.top_p - 0.05), 4),
        )
    if positive_ratio > HIGH_POSITIVE_RATIO:
        return replace(
            params,
            temperature=round(min(1.0, params.temperature + 0.05), 4),
            top_p=round(min(1.0, params.top_p + 0.02), 4),
        )
    return params


class ParameterTuningService:
    """
    Owns the per-response-type generation parameters and the feedback that tunes them.

    Storage failures never reach the caller: reads fall back to "no data" and
    writes become no-ops after being logged.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        defaults: Optional[Dict[str, GenerationParameters]] = None,
        window_days: int = 7,
        interval_seconds: float = 24 * 60 * 60,
        min_feedback: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage or NullKeyValueStore()
        self.defaults = dict(defaults or DEFAULT_PARAMETERS)
        if DEFAULT_KEY not in self.defaults:
            raise ValueError(f"Default parameters must include the '{DEFAULT_KEY}' key")
        self.window_days = window_days
        self.interval_seconds = interval_seconds
        self.min_feedback = min_feedback
        self.clock = clock or _utcnow

        self._parameters: Dict[str, GenerationParameters] = dict(self.defaults)
        self._feedback: List[FeedbackEvent] = []
        self._feedback_lock = asyncio.Lock()
        self._analysis_lock = asyncio.Lock()
        self._scheduler: Optional[asyncio.Task] = None

    def get_parameters(self, response_type: str) -> GenerationParameters:
        """Get the tuned parameters for a response type, or the defaults for unknown types."""
        return self._parameters.get(response_type) or self._parameters[DEFAULT_KEY]

    def all_parameters(self) -> Dict[str, GenerationParameters]:
        return dict(self._parameters)

    def feedback(self) -> List[FeedbackEvent]:
        return list(self._feedback)

    def enhance_prompt(self, base_prompt: str, response_type: str) -> str:
        """Hook for feedback-driven prompt engineering; prompts pass through unchanged for now."""
        return base_prompt

    async def record_feedback(self, event: FeedbackEvent) -> None:
        """
        Record a feedback event in memory and in local storage.

        Args:
            event: The feedback to record

        A storage failure is logged and otherwise ignored; the in-memory copy is kept.
        """
        async with self._feedback_lock:
            self._feedback.append(event)
            payload = json.dumps([f.to_dict() for f in self._feedback])
            try:
                await self.storage.set(STORAGE_KEY_FEEDBACK, payload)
            except Exception as e:
                logger.error(
                    f"Error saving feedback: {str(e)}",
                    extra={"feedback_id": event.id, "response_id": event.response_id, "error": str(e)},
                )

        logger.info(
            "Feedback recorded",
            extra={
                "feedback_id": event.id,
                "response_id": event.response_id,
                "response_type": event.response_type,
                "rating": event.rating,
                "comment_length": len(event.comment or ""),
            },
        )

    async def analyze_and_update(self) -> None:
        """Analyze recent feedback and adjust parameters per response type."""
        async with self._analysis_lock:
            try:
                await self._analyze()
            except Exception as e:
                logger.error(f"Error analyzing feedback: {str(e)}", exc_info=True)

    async def _analyze(self) -> None:
        feedback = list(self._feedback) or await self._load_feedback()
        if not feedback:
            logger.info("No feedback data to analyze")
            return

        cutoff = self.clock() - timedelta(days=self.window_days)
        by_type: Dict[str, List[FeedbackEvent]] = defaultdict(list)
        for event in feedback:
            if event.timestamp >= cutoff:
                by_type[event.response_type].append(event)

        for response_type, events in by_type.items():
            if len(events) < self.min_feedback:
                continue

            positive_count = sum(1 for e in events if e.rating == "positive")
            total_rated = sum(1 for e in events if e.rating in RATINGS)
            if total_rated == 0:
                continue

            positive_ratio = positive_count / total_rated
            current = self._parameters.get(response_type) or self.defaults[DEFAULT_KEY]
            updated = adjust_parameters(current, positive_ratio)
            self._parameters[response_type] = updated

            logger.info(
                f"Updated parameters for {response_type} based on {len(events)} feedbacks",
                extra={
                    "response_type": response_type,
                    "feedback_count": len(events),
                    "positive_ratio": round(positive_ratio, 4),
                    "temperature": updated.temperature,
                    "top_p": updated.top_p,
                },
            )

        await self._save_parameters()

    async def initialize(self) -> None:
        """Load persisted state, run an analysis pass and start the daily schedule."""
        logger.info("Initializing LLM tuning service...")

        stored_feedback = await self._load_feedback()
        if stored_feedback:
            self._feedback = stored_feedback
            logger.info(f"Loaded {len(stored_feedback)} feedback entries from storage")

        stored_parameters = await self._load_parameters()
        if stored_parameters:
            # Categories missing from storage keep their hard-coded defaults
            self._parameters = {**self.defaults, **stored_parameters}
            logger.info("Loaded optimal parameters from storage")

        await self.analyze_and_update()
        self.start_scheduler()
        logger.info("LLM tuning service initialized successfully")

    def start_scheduler(self) -> None:
        if self._scheduler is not None and not self._scheduler.done():
            return
        self._scheduler = asyncio.create_task(self._run_periodically())

    async def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.cancel()
        with suppress(asyncio.CancelledError):
            await self._scheduler
        self._scheduler = None

    async def _run_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.analyze_and_update()

    async def _load_feedback(self) -> List[FeedbackEvent]:
        try:
            raw = await self.storage.get(STORAGE_KEY_FEEDBACK)
        except Exception as e:
            logger.error(f"Error loading feedback from storage: {str(e)}")
            return []
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except ValueError as e:
            logger.error(f"Stored feedback is not valid JSON: {str(e)}")
            return []
        if not isinstance(entries, list):
            logger.error(f"Stored feedback is not a list: {type(entries).__name__}")
            return []

        events = []
        for entry in entries:
            try:
                events.append(FeedbackEvent.from_dict(entry))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable feedback entry: {str(e)}")
        return events

    async def _load_parameters(self) -> Optional[Dict[str, GenerationParameters]]:
        try:
            raw = await self.storage.get(STORAGE_KEY_PARAMETERS)
        except Exception as e:
            logger.error(f"Error loading parameters from storage: {str(e)}")
            return None
        if not raw:
            return None

        try:
            return {
                response_type: GenerationParameters.from_dict(values)
                for response_type, values in json.loads(raw).items()
            }
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Stored parameters are unreadable: {str(e)}")
            return None

    async def _save_parameters(self) -> None:
        payload = json.dumps({key: params.to_dict() for key, params in self._parameters.items()})
        try:
            await self.storage.set(STORAGE_KEY_PARAMETERS, payload)
            logger.info("LLM parameters saved to storage")
        except Exception as e:
            logger.error(f"Error saving parameters to storage: {str(e)}")
