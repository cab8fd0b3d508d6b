"""
OpenRouter chat-completion client for image classification.

Request building and response parsing are plain functions shared by the blocking
(:class:`OpenRouterClient`) and asynchronous (:class:`AsyncOpenRouterClient`) transports, so both
send the same request and fail the same way.
"""

import json
import re
import time
from types import TracebackType
from typing import Any, Self

import httpx
from loguru import logger
from pydantic import ValidationError

from photo_describer.errors import ExtractionError, NetworkError, ProtocolError
from photo_describer.images import mime_type_for
from photo_describer.models import ClassificationResult


API_URL = "https://openrouter.ai/api/v1/chat/completions"
HTTP_REFERER = "https://localhost"
X_TITLE = "Photo Description Generator"
MAX_TOKENS = 1500
TEMPERATURE = 0.1
DEFAULT_TIMEOUT = 120.0

INSTRUCTION = (
    "Please analyze this image and provide a detailed description and relevant tags. "
    "Your response MUST be in JSON format with exactly these fields: "
    '{"description": "detailed description here", "tags": ["tag1", "tag2", "tag3"]}. '
    "Do not include any other text, only the JSON object."
)

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def build_request_body(model: str, base64_image: str, image_name: str) -> dict[str, Any]:
    """
    Build the chat-completion request for one image.

    Args:
        model: OpenRouter model identifier
        base64_image: Base64-encoded image bytes
        image_name: Filename used to pick the MIME type of the data URL

    """
    data_url = f"data:{mime_type_for(image_name)};base64,{base64_image}"
    return {
        "model": model,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": INSTRUCTION},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            },
        ],
        "max_tokens": MAX_TOKENS,
        "temperature": TEMPERATURE,
    }


def build_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "HTTP-Referer": HTTP_REFERER,
        "X-Title": X_TITLE,
    }


def _message_content(response_body: str) -> str:
    try:
        result = json.loads(response_body)
    except ValueError as exc:
        msg = "Invalid JSON response from API"
        raise ProtocolError(msg) from exc

    if not isinstance(result, dict):
        msg = "Invalid JSON response from API"
        raise ProtocolError(msg)

    choices = result.get("choices")
    if not isinstance(choices, list) or not choices:
        msg = "Response doesn't contain 'choices' array"
        raise ProtocolError(msg)

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        msg = "Response doesn't contain expected message content structure"
        raise ProtocolError(msg)
    return content


def extract_json_text(content: str) -> str:
    """
    Locate the JSON object inside free-form model output.

    A ```json fenced block wins, then the widest ``{...}`` span, then the content as is.

    Examples:
        >>> extract_json_text('Sure! {"a": 1} Hope that helps.')
        '{"a": 1}'

    """
    if match := _FENCED_JSON.search(content):
        logger.debug("json_extracted_from_code_block")
        return match.group(1).strip()
    if match := _JSON_OBJECT.search(content):
        logger.debug("json_extracted_from_content")
        return match.group(0).strip()
    return content.strip()


def extract_metadata(response_body: str) -> ClassificationResult:
    """
    Parse a raw chat-completion response body into a ClassificationResult.

    Raises:
        ProtocolError: If the body is not a chat-completion object with message content.
        ExtractionError: If the content holds no JSON object with ``description`` and ``tags``.

    """
    logger.debug("raw_api_response", body=response_body)
    content = _message_content(response_body)
    logger.debug("api_message_content", content=content)

    json_text = extract_json_text(content)
    try:
        metadata = json.loads(json_text)
    except ValueError as exc:
        logger.error("json_content_parse_failed", content=json_text)
        msg = "Could not parse JSON from response content"
        raise ExtractionError(msg) from exc

    if not isinstance(metadata, dict) or "description" not in metadata or "tags" not in metadata:
        logger.error("metadata_fields_missing", metadata=metadata)
        msg = "Response doesn't contain required 'description' and 'tags' fields"
        raise ExtractionError(msg)

    try:
        return ClassificationResult.model_validate(metadata)
    except ValidationError as exc:
        logger.error("metadata_validation_failed", errors=exc.errors())
        msg = f"Invalid 'description' or 'tags' values: {exc}"
        raise ExtractionError(msg) from exc


def _check_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    logger.error("api_error_response", status=response.status_code, body=response.text)
    msg = f"API request failed with HTTP {response.status_code}"
    raise NetworkError(msg, status_code=response.status_code)


def _network_error(exc: httpx.HTTPError) -> NetworkError:
    logger.error("api_request_error", error=str(exc), error_type=type(exc).__name__)
    return NetworkError(f"API request error: {exc}")


class OpenRouterClient:
    """
    Blocking classification client.

    Args:
        api_key: OpenRouter API key sent as a bearer token
        model: Model identifier
        timeout: Seconds to wait for the API before failing with NetworkError
        http_client: Pre-built httpx client (the caller keeps ownership)

    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.model = model
        self._headers = build_headers(api_key)
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout)

    def classify(self, base64_image: str, image_name: str) -> ClassificationResult:
        """Send one image to the model and return its description and tags."""
        body = build_request_body(self.model, base64_image, image_name)
        logger.debug("sending_classification_request", model=self.model, image=image_name)
        t0 = time.perf_counter()
        try:
            response = self._client.post(API_URL, headers=self._headers, json=body)
        except httpx.HTTPError as exc:
            raise _network_error(exc) from exc
        logger.info(
            "classification_response_received",
            status=response.status_code,
            seconds=round(time.perf_counter() - t0, 3),
        )
        _check_status(response)
        return extract_metadata(response.text)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncOpenRouterClient:
    """Asynchronous classification client; same contract as :class:`OpenRouterClient`."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self._headers = build_headers(api_key)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def classify(self, base64_image: str, image_name: str) -> ClassificationResult:
        body = build_request_body(self.model, base64_image, image_name)
        logger.debug("sending_classification_request", model=self.model, image=image_name)
        t0 = time.perf_counter()
        try:
            response = await self._client.post(API_URL, headers=self._headers, json=body)
        except httpx.HTTPError as exc:
            raise _network_error(exc) from exc
        logger.info(
            "classification_response_received",
            status=response.status_code,
            seconds=round(time.perf_counter() - t0, 3),
        )
        _check_status(response)
        return extract_metadata(response.text)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
