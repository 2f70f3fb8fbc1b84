"""
Session plan generators. The generation service treats them as opaque:
generate(max_pullups, history, model) -> GeneratedPlan, or GeneratorTimeout / GeneratorError.
"""

import asyncio
import json
import logging
import time
from typing import Any, Protocol

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from pullup_trainer.config import settings
from pullup_trainer.schemas.generation import GeneratedPlan
from pullup_trainer.services.gemini_common import run_generate_content, strip_json_fences

logger = logging.getLogger(__name__)


class GeneratorError(Exception):
    """Generator failed or returned output that is not a usable plan."""


class GeneratorTimeout(GeneratorError):
    pass


class SessionGenerator(Protocol):
    async def generate(
        self, *, max_pullups: int, history: list[dict[str, Any]], model: str
    ) -> GeneratedPlan: ...


# Percent of max pull-ups per set, hardest first
PROGRESSION_PERCENT = (80, 70, 65, 60, 55)


def coaching_comment(max_pullups: int) -> str:
    if max_pullups < 5:
        return "Great start! Focus on maintaining proper form throughout each rep. Take 2-3 minutes rest between sets."
    if max_pullups < 10:
        return (
            "Solid foundation! You're progressing well. Remember to engage your core and control the descent. "
            "Rest 90-120 seconds between sets."
        )
    if max_pullups < 15:
        return (
            "Excellent progress! You're hitting intermediate volume. Focus on explosive pull-ups and controlled "
            "negatives. Rest 60-90 seconds between sets."
        )
    if max_pullups < 20:
        return (
            "Advanced level! Mix tempo variations and consider weighted pull-ups for continued growth. "
            "Rest 60 seconds between sets."
        )
    return (
        "Elite performance! Consider periodization and weighted progressions. Your volume tolerance is exceptional. "
        "Rest 45-60 seconds between sets."
    )


class MockGenerator:
    """Deterministic offline generator: a descending progression from the user's max."""

    async def generate(self, *, max_pullups: int, history: list[dict[str, Any]], model: str) -> GeneratedPlan:
        started = time.monotonic()
        sets = [max(1, max_pullups * pct // 100) for pct in PROGRESSION_PERCENT]
        comment = (
            f"{coaching_comment(max_pullups)} Total volume: {sum(sets)} reps. "
            "Aim to complete this within 15-20 minutes."
        )
        return GeneratedPlan(sets=sets, comment=comment, duration_ms=int((time.monotonic() - started) * 1000))


GENERATION_CONFIG = {
    "temperature": 0.4,
    "top_p": 0.95,
    "max_output_tokens": 512,
    "response_mime_type": "application/json",
}

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}

SYSTEM_PROMPT = """You are a pull-up coach. Plan the athlete's next training session.

Rules:
- Output ONLY valid JSON with exactly these fields: sets (array of exactly 5 integers, each 1-60), comment (one short paragraph of coaching advice).
- Base the plan on the athlete's max pull-ups and, when given, their recent sessions (most recent first).
- No explanations, no markdown. Only the JSON object."""


def build_prompt(max_pullups: int, history: list[dict[str, Any]]) -> str:
    lines = [SYSTEM_PROMPT, "", f"Max pull-ups in one set: {max_pullups}"]
    if history:
        lines.append("Recent sessions:")
        for item in history:
            rpe = item.get("rpe")
            lines.append(
                f"- {item['session_date']}: {item['status']}, sets {item['sets']}, total {item['total_reps']}"
                + (f", RPE {rpe}" if rpe is not None else "")
            )
    return "\n".join(lines)


def parse_plan(text: str) -> GeneratedPlan:
    try:
        data = json.loads(strip_json_fences(text))
    except json.JSONDecodeError as e:
        raise GeneratorError(f"Invalid JSON from model: {e}") from e
    sets = data.get("sets") if isinstance(data, dict) else None
    comment = data.get("comment") if isinstance(data, dict) else None
    if not isinstance(sets, list) or len(sets) != 5 or not all(isinstance(v, (int, float)) for v in sets):
        raise GeneratorError("Model output must contain exactly 5 numeric sets")
    if not isinstance(comment, str) or not comment.strip():
        raise GeneratorError("Model output must contain a comment")
    return GeneratedPlan(sets=[int(round(v)) for v in sets], comment=comment.strip())


class GeminiGenerator:
    async def generate(self, *, max_pullups: int, history: list[dict[str, Any]], model: str) -> GeneratedPlan:
        started = time.monotonic()
        gm = genai.GenerativeModel(
            model or settings.gemini_model,
            generation_config=GENERATION_CONFIG,
            safety_settings=SAFETY_SETTINGS,
        )
        try:
            response = await run_generate_content(gm, [build_prompt(max_pullups, history)])
        except asyncio.TimeoutError as e:
            raise GeneratorTimeout(f"Gemini did not answer within {settings.gemini_request_timeout_seconds}s") from e
        except Exception as e:
            raise GeneratorError(f"Gemini request failed: {e}") from e
        try:
            text = response.text
        except ValueError as e:
            # Raised when the candidate was blocked or carries no text part
            raise GeneratorError(f"Gemini returned no text: {e}") from e
        plan = parse_plan(text or "")
        plan.duration_ms = int((time.monotonic() - started) * 1000)
        return plan


def get_generator() -> SessionGenerator:
    """FastAPI dependency: generator for the configured provider."""
    if settings.llm_provider == "gemini":
        return GeminiGenerator()
    return MockGenerator()
