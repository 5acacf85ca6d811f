# suggestions.py
"""Suggested transaction amounts.

The engine asks an Ollama model for three amounts close to the user's recent
transactions of one type. Whatever comes back goes through a quality gate;
anything missing, malformed, default-looking or repeated is replaced by a
deterministic heuristic built from the mean of the history, so ``suggest``
always hands the caller three amounts and never raises.
"""
import re
import json
import math
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_AMOUNTS = [500, 1000, 2000]
ROUNDING_STEP = 500
COLLISION_SHIFT = 250
SUGGESTION_COUNT = 3

NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass
class SuggestionRequest:
    transaction_history: List[float]
    transaction_type: str
    previous_suggestions: Optional[List[float]] = None


@dataclass
class SuggestionResult:
    recommended_amounts: List[float]
    source: str = "model"


def same_amounts(a, b) -> bool:
    """Order-insensitive comparison of two amount lists"""
    if a is None or b is None or len(a) != len(b):
        return False
    return sorted(a) == sorted(b)


def _as_amount(value):
    value = float(value)
    return int(value) if value.is_integer() else value


def round_to_step(value: float, step: int = ROUNDING_STEP) -> int:
    # Half-up, so 250 -> 500 and 750 -> 1000 rather than banker's rounding
    return int(math.floor(value / step + 0.5)) * step


def fallback_amounts(history, previous=None) -> List[float]:
    avg = sum(history) / len(history)
    base = round_to_step(avg)
    if base == 0:
        base = ROUNDING_STEP

    if previous and base in previous:
        base += ROUNDING_STEP

    amounts = [a for a in (base, base + 500, base + 1000) if a > 0]
    if previous and same_amounts(amounts, previous):
        return [a + COLLISION_SHIFT for a in amounts]
    return amounts


def sanitize_amounts(values) -> List[float]:
    """Keep finite positive numbers, first occurrence only, at most three"""
    cleaned = []
    for value in values or []:
        if isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            continue
        if not math.isfinite(number) or number <= 0:
            continue
        number = _as_amount(number)
        if number not in cleaned:
            cleaned.append(number)
        if len(cleaned) == SUGGESTION_COUNT:
            break
    return cleaned


def parse_recommended_amounts(text: str) -> Optional[list]:
    """Pull the amount list out of a model reply.

    Accepts ``{"recommendedAmounts": [...]}``, a bare JSON list, or failing
    that any numbers found in free text.
    """
    if not text or not text.strip():
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        found = NUMBER_PATTERN.findall(text)
        return [float(n) for n in found] or None

    if isinstance(payload, dict):
        for key in ("recommendedAmounts", "recommended_amounts", "amounts"):
            if isinstance(payload.get(key), list):
                return payload[key]
        return None
    if isinstance(payload, list):
        return payload
    return None


def build_suggestion_prompt(request: SuggestionRequest) -> str:
    history = ", ".join(f"{_as_amount(a)}" for a in request.transaction_history)
    avoid = ""
    if request.previous_suggestions:
        shown = ", ".join(f"{_as_amount(a)}" for a in request.previous_suggestions)
        avoid = (
            f"\n- The user has already seen these suggestions: [{shown}]. You MUST give "
            "different amounts this time. DO NOT repeat any of them."
        )

    return f"""You suggest transaction amounts for an ATM. You are given the user's last transactions of one type.

RULES:
- Return three different round numbers close to the previous amounts, rounded to the nearest 500 or 1000.
- Example: history [480, 510, 495] -> [500, 1000, 1500]. History [2100, 2200, 1900] -> [1500, 2000, 2500].
- DO NOT return [500, 1000, 2000] when there is a transaction history.{avoid}

Transaction Type: {request.transaction_type}
Transaction History: [{history}]

Reply with JSON only, in the form {{"recommendedAmounts": [a, b, c]}}."""


class OllamaSuggestionClient:
    """Remote suggestion call against Ollama's generate endpoint"""

    def __init__(self, base_url: str, model: str, timeout: int = 30):
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    def recommend(self, request: SuggestionRequest) -> Optional[list]:
        payload = {
            "model": self.model,
            "prompt": build_suggestion_prompt(request),
            "stream": False,
            "format": "json",
            "options": {
                "temperature": 0.2,
                "top_p": 0.9,
            },
        }
        resp = requests.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return parse_recommended_amounts(resp.json().get("response", ""))


class SuggestionEngine:
    """Three amounts from the model when it gives usable ones, otherwise from the fallback"""

    def __init__(self, client: Optional[OllamaSuggestionClient] = None):
        self.client = client

    def _fallback(self, request, reason):
        logger.info("Using fallback suggestions for %s: %s", request.transaction_type, reason)
        amounts = fallback_amounts(request.transaction_history, request.previous_suggestions)
        return SuggestionResult(amounts, source="fallback")

    def suggest(self, request: SuggestionRequest) -> SuggestionResult:
        history = request.transaction_history
        previous = request.previous_suggestions

        if not history:
            return SuggestionResult(list(DEFAULT_AMOUNTS), source="default")

        if self.client is None:
            return self._fallback(request, "model disabled")

        try:
            raw = self.client.recommend(request)
        except Exception:
            logger.warning("Suggestion model call failed", exc_info=True)
            return self._fallback(request, "model call failed")

        amounts = sanitize_amounts(raw)
        if len(amounts) < SUGGESTION_COUNT:
            return self._fallback(request, f"only {len(amounts)} usable amounts in model reply")

        if same_amounts(amounts, DEFAULT_AMOUNTS):
            return self._fallback(request, "model returned the default amounts")
        if previous and same_amounts(amounts, previous):
            return self._fallback(request, "model repeated previous suggestions")

        return SuggestionResult(amounts, source="model")


class SuggestionTracker:
    """Shown suggestions for one form, guarded by a request sequence number.

    Only the reply to the most recent ``begin()`` may replace what is shown;
    a slower reply to an older request is dropped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sequence = 0
        self.amounts: List[float] = []

    @property
    def previous(self) -> Optional[List[float]]:
        return list(self.amounts) if self.amounts else None

    def begin(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def deliver(self, ticket: int, amounts) -> bool:
        with self._lock:
            if ticket != self._sequence:
                logger.debug("Dropping stale suggestions for request %s", ticket)
                return False
            self.amounts = sorted(amounts)
            return True

    def clear(self):
        with self._lock:
            self._sequence += 1
            self.amounts = []
