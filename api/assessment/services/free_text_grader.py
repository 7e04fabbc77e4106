"""
Free-Text Grader
Scores essay/theory answers with Gemini, falling back to a deterministic
keyword-overlap heuristic whenever the model is unavailable or misbehaves.
"""
import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional, Set

from google import genai
from google.genai import types

from assessment.config import (
    MODEL_NAME,
    ai_grading_enabled,
    get_api_key,
    get_grader_timeout,
    get_optional_api_key,
    get_prompt,
)
from assessment.schemas import GradingMethod

logger = logging.getLogger(__name__)

# Words that carry no subject content in typical question stems.
STEM_STOP_WORDS = frozenset({
    "explain", "describe", "discuss", "difference", "differentiate", "function",
    "functions", "steps", "process", "using", "use", "diagram", "below", "identify",
    "any", "three", "two", "features", "benefits", "role", "how", "what", "why",
    "and", "or", "of", "in", "on", "to", "the", "a", "an",
})

# (minimum overlap ratio, fraction of max marks), checked top-down.
OVERLAP_BANDS = (
    (0.8, 1.0),
    (0.5, 0.8),
    (0.35, 0.6),
    (0.2, 0.4),
    (0.1, 0.2),
)

_INTEGER_PATTERN = re.compile(r"-?\d+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class FreeTextResult:
    marks: int
    method: GradingMethod


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_marks(value: float, max_marks: float) -> int:
    """Rounds value and clamps it into [0, floor(max_marks)]."""
    upper = int(math.floor(max_marks))
    return max(0, min(upper, round_half_up(value)))


def tokenize(text: Optional[str]) -> Set[str]:
    """Lowercase alphanumeric word set."""
    cleaned = _NON_ALNUM.sub(" ", (text or "").lower())
    return {token for token in cleaned.split() if token}


def stem_keywords(stem: Optional[str]) -> Set[str]:
    return {
        token for token in tokenize(stem)
        if len(token) >= 3 and token not in STEM_STOP_WORDS
    }


def overlap_ratio(student_answer: str, model_answer: str, question: str = "") -> float:
    """Share of model-answer tokens (or stem keywords) present in the student answer."""
    model_tokens = tokenize(model_answer)
    if not model_tokens:
        model_tokens = stem_keywords(question)
    if not model_tokens:
        return 0.0
    student_tokens = tokenize(student_answer)
    return len(student_tokens & model_tokens) / len(model_tokens)


def fallback_score(
    question: str, student_answer: str, model_answer: str, max_marks: float
) -> int:
    """Deterministic heuristic mark in [0, max_marks]."""
    ratio = overlap_ratio(student_answer, model_answer, question)
    for threshold, fraction in OVERLAP_BANDS:
        if ratio >= threshold:
            return clamp_marks(max_marks * fraction, max_marks)
    return 0


def parse_first_integer(text: Optional[str]) -> Optional[int]:
    match = _INTEGER_PATTERN.search(text or "")
    return int(match.group(0)) if match else None


def build_grading_prompt(
    question: str,
    student_answer: str,
    model_answer: str,
    max_marks: float,
    rubric: Optional[str] = None,
) -> str:
    expected = f"Expected points: {model_answer}\n" if model_answer else ""
    rubric_text = f"Rubric: {rubric}\n" if rubric else ""
    return get_prompt(
        "grader",
        max_marks=int(math.floor(max_marks)),
        question=question or "",
        expected_points=expected,
        rubric=rubric_text,
        student_answer=student_answer or "",
    )


def get_client(api_key: Optional[str] = None, timeout: Optional[float] = None) -> genai.Client:
    """
    Creates and returns a configured Gemini API client.

    Args:
        api_key: Explicit key; the environment key is used when empty.
        timeout: Per-request HTTP timeout in seconds.

    Raises:
        ValueError: If API key is not configured.
    """
    resolved_key = api_key.strip() if api_key else ""
    if not resolved_key:
        resolved_key = get_api_key()
    http_options = None
    if timeout:
        http_options = types.HttpOptions(timeout=int(timeout * 1000))
    return genai.Client(api_key=resolved_key, http_options=http_options)


class FreeTextGrader:
    """
    Grades free-text answers.

    The Gemini path is used only when a client is available; every failure on
    that path (timeout, API error, reply without an integer) is logged and the
    heuristic answers instead, so callers never see a grading error.
    """

    def __init__(self, client: Optional[genai.Client] = None, timeout: float = 15.0):
        self.client = client
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "FreeTextGrader":
        timeout = get_grader_timeout()
        api_key = get_optional_api_key()
        if not api_key or not ai_grading_enabled():
            logger.info("[Grader] AI grading disabled; using heuristic scoring only")
            return cls(client=None, timeout=timeout)
        return cls(client=get_client(api_key, timeout=timeout), timeout=timeout)

    async def score(
        self,
        question: str,
        student_answer: str,
        model_answer: str,
        max_marks: float,
        rubric: Optional[str] = None,
    ) -> FreeTextResult:
        if not (student_answer or "").strip():
            return FreeTextResult(0, GradingMethod.HEURISTIC)

        if self.client is not None:
            marks = await self._score_with_model(
                question, student_answer, model_answer, max_marks, rubric
            )
            if marks is not None:
                return FreeTextResult(marks, GradingMethod.AI)

        marks = fallback_score(question, student_answer, model_answer, max_marks)
        return FreeTextResult(marks, GradingMethod.HEURISTIC)

    async def _score_with_model(
        self,
        question: str,
        student_answer: str,
        model_answer: str,
        max_marks: float,
        rubric: Optional[str],
    ) -> Optional[int]:
        prompt = build_grading_prompt(question, student_answer, model_answer, max_marks, rubric)
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=MODEL_NAME,
                    contents=prompt,
                    config=types.GenerateContentConfig(temperature=0),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("[Grader] Gemini timed out after %ss; falling back", self.timeout)
            return None
        except Exception as e:
            logger.warning("[Grader] Gemini call failed (%s); falling back", e)
            return None

        raw = parse_first_integer(getattr(response, "text", None))
        if raw is None:
            logger.warning("[Grader] No integer in Gemini reply; falling back")
            return None
        return clamp_marks(raw, max_marks)


async def score_free_text_answer(
    question: str,
    student_answer: str,
    model_answer: str,
    max_marks: float,
    rubric: Optional[str] = None,
    grader: Optional[FreeTextGrader] = None,
) -> int:
    """Integer mark in [0, max_marks] for a free-text answer."""
    grader = grader or FreeTextGrader.from_env()
    result = await grader.score(question, student_answer, model_answer, max_marks, rubric)
    return result.marks
