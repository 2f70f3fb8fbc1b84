"""
Gemini call helper: runs the blocking generate_content in a thread pool with a timeout,
retrying 429/5xx-looking failures with exponential backoff. Timeouts are not retried;
the generation log records them as such.
"""
from __future__ import annotations

import asyncio
import logging
import re

from starlette.concurrency import run_in_threadpool

from pullup_trainer.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_PATTERN = re.compile(r"\b(429|5\d{2})\b")
MAX_ATTEMPTS = 3


def is_retryable_error(exc: BaseException) -> bool:
    msg = getattr(exc, "message", None) or str(exc)
    return bool(RETRYABLE_STATUS_PATTERN.search(msg))


def strip_json_fences(text: str) -> str:
    """Remove ```json fences some responses wrap around the payload."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


async def run_generate_content(model, contents, *, timeout: float | None = None):
    timeout = float(timeout or settings.gemini_request_timeout_seconds or 90)
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return await asyncio.wait_for(run_in_threadpool(model.generate_content, contents), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Gemini request timed out after %ss (attempt %d)", timeout, attempt)
            raise
        except Exception as e:
            if attempt == MAX_ATTEMPTS or not is_retryable_error(e):
                raise
            delay = 2 ** (attempt - 1)
            logger.warning("Gemini request failed (attempt %d), retrying in %ss: %s", attempt, delay, e)
            await asyncio.sleep(delay)
    raise RuntimeError("run_generate_content: unexpected exit")
