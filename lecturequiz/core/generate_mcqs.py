"""
Multiple-choice question generation via a local Ollama model.
Sends one transcript window per request in JSON mode and validates the result.
Includes exponential backoff for busy (429/503) responses.
"""

import json
import logging
import random
import re
import time

import requests

from lecturequiz.core.config import GeneratorSettings
from lecturequiz.core.constants import (
    ErrorCode, OPTION_LETTERS, OPTIONS_PER_QUESTION, MAX_RAW_RESPONSE_LEN,
)
from lecturequiz.core.error_codes import JobError

logger = logging.getLogger(__name__)

_RETRY_STATUS = (429, 503)
_RETRY_BASE_DELAY = 2.0   # seconds — doubles each retry with jitter

# "A", "b", "C)", "D.", "(A)", "Option B"
_LETTER_RE = re.compile(r'^(?:option\s+)?\(?([A-Da-d])[).:]?$', re.IGNORECASE)

_PROMPT_TEMPLATE = """Context: "{text}"

Based ONLY on the context provided above, generate exactly {count} multiple-choice questions (MCQs).
Each MCQ must have:
1. A "question" statement.
2. An "options" array containing exactly 4 distinct string choices.
3. A "correctAnswer" field indicating the letter of the correct option (e.g., "A", "B", "C", or "D").

Format the output as a VALID JSON array of objects. For example:
[
  {{
    "question": "What is the main topic discussed?",
    "options": ["Topic X", "Topic Y", "Topic Z", "Topic W"],
    "correctAnswer": "A"
  }},
  {{
    "question": "Which concept is explained in detail?",
    "options": ["Concept 1", "Concept 2", "Concept 3", "Concept 4"],
    "correctAnswer": "C"
  }}
]
Ensure the JSON is well-formed and can be parsed directly. Do not include any text or explanation outside the JSON array.
"""


def build_prompt(text: str, count: int) -> str:
    return _PROMPT_TEMPLATE.format(text=text.strip(), count=count)


def parse_mcq_payload(raw: str) -> list:
    """
    Parse the model's string payload into a list of candidate entries.
    Accepts an array, a single object, or an object wrapping the array.
    """
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        raise JobError(ErrorCode.LLM_INVALID_JSON,
                       "Failed to parse LLM response",
                       details=f"Raw: {str(raw)[:MAX_RAW_RESPONSE_LEN]}")

    if isinstance(parsed, dict):
        for key in ('questions', 'mcqs', 'MCQs'):
            if isinstance(parsed.get(key), list):
                return parsed[key]
        return [parsed]
    if isinstance(parsed, list):
        return parsed
    raise JobError(ErrorCode.LLM_INVALID_JSON,
                   f"LLM response is JSON but not an object or array ({type(parsed).__name__})",
                   details=f"Raw: {str(raw)[:MAX_RAW_RESPONSE_LEN]}")


def resolve_answer_letter(answer, options: list[str]) -> str | None:
    """Map a correctAnswer (letter or option text) to its option letter."""
    if not isinstance(answer, str) or not answer.strip():
        return None
    answer = answer.strip()

    m = _LETTER_RE.match(answer)
    if m:
        return m.group(1).upper()

    folded = answer.casefold()
    for letter, option in zip(OPTION_LETTERS, options):
        if option.strip().casefold() == folded:
            return letter
    return None


def _normalize_mcq(item) -> dict | None:
    if not isinstance(item, dict):
        return None

    question = item.get('question')
    if not isinstance(question, str) or not question.strip():
        return None

    options = item.get('options')
    if not isinstance(options, list) or len(options) != OPTIONS_PER_QUESTION:
        return None
    if not all(isinstance(o, str) and o.strip() for o in options):
        return None
    options = [o.strip() for o in options]
    if len({o.casefold() for o in options}) != OPTIONS_PER_QUESTION:
        return None

    letter = resolve_answer_letter(item.get('correctAnswer'), options)
    if letter is None:
        return None

    return {
        'question': question.strip(),
        'options': options,
        'correctAnswer': letter,
    }


def validate_mcqs(items: list) -> tuple[list[dict], int]:
    """
    Keep well-formed questions only.
    Returns (valid questions, number rejected).
    """
    valid = []
    for item in items:
        mcq = _normalize_mcq(item)
        if mcq is not None:
            valid.append(mcq)
    return valid, len(items) - len(valid)


class QuestionGenerator:
    """Generates MCQs for one transcript window per call."""

    def __init__(self, settings: GeneratorSettings, session: requests.Session | None = None):
        self.settings = settings
        # None: module-level requests.post, one connection per call
        self.session = session

    def _request(self, prompt: str) -> str:
        s = self.settings
        body = {
            "model": s.model_name,
            "prompt": prompt,
            "stream": False,
            "format": "json",
        }

        for attempt in range(s.max_retries + 1):
            try:
                client = self.session or requests
                resp = client.post(s.api_url, json=body, timeout=s.request_timeout_sec)
            except requests.exceptions.Timeout:
                raise JobError(ErrorCode.LLM_TIMEOUT, "LLM request timed out")
            except requests.exceptions.ConnectionError:
                raise JobError(ErrorCode.NETWORK_TRANSIENT,
                               f"Network error connecting to {s.api_url}")
            except requests.exceptions.RequestException as e:
                raise JobError(ErrorCode.LLM_REQUEST_FAILED, f"LLM request failed: {e}")

            if resp.status_code in _RETRY_STATUS:
                if attempt < s.max_retries:
                    # Exponential backoff with jitter: 2s, 4s, 8s (+/- 10%)
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    delay *= 1 + random.uniform(-0.1, 0.1)
                    logger.warning(
                        "LLM endpoint busy (%d) — retrying in %.1fs (attempt %d/%d)",
                        resp.status_code, delay, attempt + 1, s.max_retries,
                    )
                    time.sleep(delay)
                    continue
                raise JobError(ErrorCode.NETWORK_TRANSIENT,
                               f"LLM endpoint busy ({resp.status_code}) after {s.max_retries} retries")

            if resp.status_code != 200:
                error_body = resp.text[:300] if resp.text else "No response body"
                raise JobError(ErrorCode.LLM_REQUEST_FAILED,
                               f"LLM returned {resp.status_code}: {error_body}")

            try:
                data = resp.json()
            except ValueError:
                raise JobError(ErrorCode.LLM_REQUEST_FAILED,
                               "Failed to parse LLM response envelope",
                               details=(resp.text or "")[:MAX_RAW_RESPONSE_LEN])

            payload = data.get('response') if isinstance(data, dict) else None
            if not isinstance(payload, str) or not payload.strip():
                raise JobError(ErrorCode.LLM_REQUEST_FAILED,
                               "Invalid response structure from LLM service")
            return payload

        # Should never reach here
        raise JobError(ErrorCode.NETWORK_TRANSIENT, "LLM request exhausted retries")

    def generate(self, text: str) -> list[dict]:
        """
        Generate questions for one window of transcript text.
        Short text returns [] without a request; an unusable reply raises JobError.
        """
        if not text or len(text.strip()) < self.settings.min_text_chars:
            logger.warning("Short/empty text segment (%d chars), skipping MCQ generation",
                           len(text.strip()) if text else 0)
            return []

        logger.info("Requesting MCQs from %s for segment starting with: %r",
                    self.settings.model_name, text.strip()[:70])
        raw = self._request(build_prompt(text, self.settings.questions_per_window))

        items = parse_mcq_payload(raw)
        valid, rejected = validate_mcqs(items)
        if rejected:
            logger.warning("Filtered out %d of %d MCQs with invalid structure",
                           rejected, len(items))
        if not valid:
            raise JobError(ErrorCode.LLM_NO_VALID_MCQS,
                           f"LLM response parsed but no valid MCQs found ({len(items)} entries)",
                           details=f"Raw: {raw[:MAX_RAW_RESPONSE_LEN]}")
        return valid
