"""
Inference Tests
===============

Reply parsing and the OpenRouter request/response envelope.
"""

import asyncio
import base64
from unittest.mock import MagicMock

import pytest
import requests

from specbridge.detection.classification import Observation, ViolationCategory
from specbridge.detection.inference import (
    DETECTION_PROMPT,
    InferenceError,
    OpenRouterInferenceClient,
    classify_response,
    parse_observation,
)


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class TestParseObservation:
    """Tests for loosely formatted model replies."""

    def test_plain_json(self):
        text = '{"has_legs_or_feet": true, "has_shoes": false, "has_hands": false, "has_gloves": false}'
        assert parse_observation(text) == Observation(True, False, False, False)

    def test_markdown_fenced_json(self):
        text = (
            "```json\n"
            '{"has_legs_or_feet": false, "has_shoes": false, "has_hands": true, "has_gloves": true}\n'
            "```"
        )
        assert parse_observation(text) == Observation(False, False, True, True)

    def test_json_inside_prose(self):
        text = (
            "Looking at the image, I can see the wearer's hands. "
            '{"has_legs_or_feet": false, "has_shoes": false, "has_hands": true, "has_gloves": false} '
            "Hope this helps!"
        )
        assert parse_observation(text) == Observation(False, False, True, False)

    def test_string_booleans(self):
        text = '{"has_legs_or_feet": "yes", "has_shoes": "no", "has_hands": "false", "has_gloves": 0}'
        assert parse_observation(text) == Observation(True, False, False, False)

    def test_missing_keys_default_false(self):
        assert parse_observation('{"has_hands": true}') == Observation(False, False, True, False)

    def test_scan_fallback_for_broken_json(self):
        text = "has_legs_or_feet: true, has_shoes: false, has_hands = no, has_gloves: no"
        assert parse_observation(text) == Observation(True, False, False, False)

    def test_unrelated_json_ignored(self):
        assert parse_observation('{"answer": 42}') is None

    @pytest.mark.parametrize("text", ["", "I cannot see anything.", "{not json"])
    def test_garbage(self, text):
        assert parse_observation(text) is None


class TestClassifyResponse:
    """Tests for reply text -> classification."""

    def test_parsed_reply(self):
        text = '{"has_legs_or_feet": true, "has_shoes": false, "has_hands": true, "has_gloves": false}'
        result = classify_response(text)
        assert result.category is ViolationCategory.BOTH
        assert result.evidence == text

    def test_unparseable_reply_is_indeterminate(self):
        result = classify_response("The image is too dark.")
        assert result.category is ViolationCategory.INDETERMINATE
        assert result.evidence == "The image is too dark."


class TestOpenRouterInferenceClient:
    """Tests for the HTTP envelope, with a mocked requests session."""

    def test_build_request(self):
        client = OpenRouterInferenceClient(api_key="k", model="m", session=MagicMock())
        body = client.build_request(b"jpeg")

        assert body["model"] == "m"
        assert body["max_tokens"] == 200
        assert body["temperature"] == 0.1
        text_part, image_part = body["messages"][0]["content"]
        assert text_part == {"type": "text", "text": DETECTION_PROMPT}
        expected_url = "data:image/jpeg;base64," + base64.b64encode(b"jpeg").decode()
        assert image_part["image_url"]["url"] == expected_url

    def test_analyze_returns_content(self):
        session = MagicMock()
        session.post.return_value = _response(
            payload={"choices": [{"message": {"content": "reply"}}]}
        )
        client = OpenRouterInferenceClient(api_key="secret", session=session)

        assert asyncio.run(client.analyze(b"jpeg")) == "reply"
        headers = session.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        assert "X-Title" in headers

    def test_missing_key(self):
        client = OpenRouterInferenceClient(api_key=None, session=MagicMock())
        with pytest.raises(InferenceError, match="not configured"):
            asyncio.run(client.analyze(b"jpeg"))

    @pytest.mark.parametrize(
        "response",
        [
            _response(status_code=429, text="rate limited"),
            _response(payload={"choices": []}),
            _response(payload=ValueError("not json")),
        ],
    )
    def test_bad_responses_raise(self, response):
        session = MagicMock()
        session.post.return_value = response
        client = OpenRouterInferenceClient(api_key="k", session=session)

        with pytest.raises(InferenceError):
            asyncio.run(client.analyze(b"jpeg"))
        assert client.get_metrics()["error_count"] == 1

    def test_network_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        client = OpenRouterInferenceClient(api_key="k", session=session)

        with pytest.raises(InferenceError, match="Network error"):
            asyncio.run(client.analyze(b"jpeg"))
