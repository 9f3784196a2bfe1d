"""
Vision Inference
================

Client for the remote vision model and parser for its replies.

This module:
    - Sends one JPEG plus a fixed instruction prompt to an
      OpenRouter-compatible chat-completions endpoint
    - Extracts the reply text from the completion envelope
    - Parses the four visibility booleans out of loosely formatted text

Design Rules:
    - Never crash on API errors; raise InferenceError for the detector
    - Blocking HTTP runs on a worker thread
    - A reply that can't be parsed is not an error here; the detector maps
      it to an indeterminate classification
"""

import asyncio
import base64
import json
import logging
import re
from typing import Any, Dict, Optional, Protocol

import requests

from specbridge.detection.classification import (
    Observation,
    ViolationClassification,
    classify,
    indeterminate,
)


logger = logging.getLogger(__name__)


DETECTION_PROMPT = """\
This is a FIRST-PERSON view from smart glasses worn by a worker. You are checking if THE WEARER has proper PPE.

IMPORTANT: Only check the WEARER'S OWN body parts, NOT other people in the scene.
- The wearer's hands appear CLOSE to the camera, typically at the BOTTOM or SIDES of the frame, and are LARGE
- The wearer's feet appear at the VERY BOTTOM of the frame when looking down, very close and large
- Other people in the scene appear SMALLER, in the MIDDLE or DISTANCE of the frame - IGNORE THEM

Check ONLY for the wearer's own hands and feet:
1. Are the WEARER'S legs/feet visible? (very close, bottom of frame, looking down at own feet)
2. If wearer's feet visible, are they wearing shoes?
3. Are the WEARER'S hands visible? (close to camera, large, at edges/bottom of frame)
4. If wearer's hands visible, are they wearing gloves?

Respond ONLY in this exact JSON format:
{"has_legs_or_feet": true/false, "has_shoes": true/false, "has_hands": true/false, "has_gloves": true/false}

Rules:
- ONLY flag the wearer's OWN hands/feet (close, large, at frame edges)
- IGNORE other people visible in the scene (they appear smaller, in the middle distance)
- has_shoes = true only if wearer's visible feet have shoes
- has_gloves = true only if wearer's visible hands have gloves
- If wearer's body parts aren't visible, set those to false
"""

# Reply keys, in Observation field order
FIELD_KEYS = ("has_legs_or_feet", "has_shoes", "has_hands", "has_gloves")

_TRUE_WORDS = {"true", "yes", "1"}
_FALSE_WORDS = {"false", "no", "0"}

_SCAN_PATTERNS = {
    key: re.compile(
        rf"[\"']?{key}[\"']?\s*[:=]\s*[\"']?(true|false|yes|no|1|0)\b",
        re.IGNORECASE,
    )
    for key in FIELD_KEYS
}


class InferenceError(Exception):
    """Raised when the vision API call fails."""
    pass


class InferenceClient(Protocol):
    """
    Protocol for vision backends.

    Implementations take one JPEG and return the model's raw reply text.
    """

    async def analyze(self, jpeg: bytes) -> str:
        ...


# =============================================================================
# Reply Parsing
# =============================================================================

def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _iter_json_objects(text: str):
    """Yield every balanced {...} span in text, outermost first."""
    depth = 0
    start = -1
    for index, char in enumerate(text):
        if char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start:index + 1]


def _observation_from_mapping(data: Dict[str, Any]) -> Optional[Observation]:
    if not any(key in data for key in FIELD_KEYS):
        return None
    values = [_coerce_bool(data.get(key, False)) for key in FIELD_KEYS]
    return Observation(*[bool(value) for value in values])


def extract_json_fragment(text: str) -> Optional[Observation]:
    """
    Parse the first well-formed JSON object that carries any reply key.

    Handles replies wrapped in prose or markdown fences.
    """
    for fragment in _iter_json_objects(text):
        try:
            data = json.loads(fragment)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            observation = _observation_from_mapping(data)
            if observation is not None:
                return observation
    return None


def scan_fields(text: str) -> Optional[Observation]:
    """
    Permissive fallback: look for `key: value` pairs anywhere in the text.

    Returns None unless at least one of the four keys is found.
    Missing keys default to False.
    """
    found: Dict[str, bool] = {}
    for key, pattern in _SCAN_PATTERNS.items():
        match = pattern.search(text)
        if match:
            found[key] = match.group(1).lower() in _TRUE_WORDS
    if not found:
        return None
    return Observation(*[found.get(key, False) for key in FIELD_KEYS])


def parse_observation(text: str) -> Optional[Observation]:
    """Structured fragment first, then the text scan."""
    return extract_json_fragment(text) or scan_fields(text)


def classify_response(text: str) -> ViolationClassification:
    """
    Turn raw reply text into a classification.

    Unparseable replies become INDETERMINATE with the text as evidence.
    """
    observation = parse_observation(text)
    if observation is None:
        logger.warning(f"Unparseable inference reply: {text[:200]!r}")
        return indeterminate(text)
    return classify(observation, evidence=text)


# =============================================================================
# OpenRouter Client
# =============================================================================

class OpenRouterInferenceClient:
    """
    Vision backend using an OpenRouter-compatible chat-completions API.

    Attributes:
        endpoint: Chat-completions URL
        model: Vision model identifier
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = "https://openrouter.ai/api/v1/chat/completions",
        model: str = "google/gemini-2.5-flash",
        timeout: float = 30.0,
        max_tokens: int = 200,
        temperature: float = 0.1,
        prompt: str = DETECTION_PROMPT,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the inference client.

        Args:
            api_key: Bearer token for the endpoint
            endpoint: Chat-completions URL
            model: Model identifier
            timeout: Request timeout in seconds
            max_tokens: Completion token cap
            temperature: Sampling temperature
            prompt: Instruction text sent with every image
            session: Optional requests session (for pooling or tests)
        """
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.prompt = prompt
        self._session = session or requests.Session()

        self._call_count: int = 0
        self._error_count: int = 0

        logger.info(f"OpenRouterInferenceClient initialized: model={model}")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def build_request(self, jpeg: bytes) -> Dict[str, Any]:
        """Request body carrying the prompt and the image as a data URL."""
        image_b64 = base64.b64encode(jpeg).decode("ascii")
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                        },
                    ],
                }
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    async def analyze(self, jpeg: bytes) -> str:
        """
        Send one frame for analysis.

        Returns:
            The model's reply text

        Raises:
            InferenceError: Missing key, network failure, non-200 or
                malformed completion envelope
        """
        if not self.configured:
            raise InferenceError("Inference API key not configured")

        self._call_count += 1
        try:
            return await asyncio.to_thread(self._analyze_sync, jpeg)
        except InferenceError:
            self._error_count += 1
            raise

    def _analyze_sync(self, jpeg: bytes) -> str:
        try:
            response = self._session.post(
                self.endpoint,
                json=self.build_request(jpeg),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "X-Title": "SpecBridge-PPEDetection",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise InferenceError(f"Network error: {e}") from e

        if response.status_code != 200:
            raise InferenceError(f"API error {response.status_code}: {response.text[:200]}")

        try:
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise InferenceError(f"Failed to parse API response: {e}") from e

        if not isinstance(content, str):
            raise InferenceError("Completion content is not text")

        logger.debug(f"Model response: {content}")
        return content

    def get_metrics(self) -> dict:
        return {
            "call_count": self._call_count,
            "error_count": self._error_count,
            "model": self.model,
        }
