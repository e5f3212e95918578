"""Client for the external image generation API.

One call to :meth:`GenerationClient.generate` is one request for one batch
item. Retries are not done here; every failure is raised as a classified
:class:`~batchforge.core.exceptions.GenerationError` for the item
processor's retry policy to act on.
"""
import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from batchforge.config import get_settings
from batchforge.core.enums import FailureKind
from batchforge.core.exceptions import GenerationError, generation_error
from batchforge.generation.normalizer import Found, normalize_response
from batchforge.worker.models import GenerationParams

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 10_000
MAX_REFERENCE_IMAGES = 14
PRO_MODEL_MARKER = "pro"


@dataclass
class GeneratedArtifact:
    """A successfully generated artifact."""

    data: bytes
    media_type: str
    model: str
    processing_time_ms: int


def _retry_after(headers: httpx.Headers) -> Optional[float]:
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def classify_http_error(response: httpx.Response) -> GenerationError:
    """
    Classify a non-2xx provider response.

    Args:
        response: Provider response

    Returns:
        GenerationError: Classified error with a user-facing message
    """
    status_code = response.status_code

    if status_code in (401, 403):
        return generation_error("Invalid or expired API key", FailureKind.AUTH_ERROR, status_code)

    if status_code == 429:
        return generation_error(
            "Rate limit exceeded. Please try again later.",
            FailureKind.RATE_LIMITED,
            status_code,
            retry_after=_retry_after(response.headers),
        )

    if status_code >= 500:
        return generation_error(
            "Generation service error. Please try again later.",
            FailureKind.TRANSIENT_NETWORK,
            status_code,
        )

    message = "Invalid request"
    if status_code == 400:
        try:
            provider_message = response.json().get("error", {}).get("message")
        except (ValueError, AttributeError):
            provider_message = None
        if isinstance(provider_message, str) and provider_message:
            message = provider_message
    return generation_error(message, FailureKind.CLIENT_ERROR, status_code)


class GenerationClient:
    """Wraps single calls to the provider's generateContent endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        attempt_timeout: Optional[float] = None,
        default_model: Optional[str] = None,
        allowed_models: Optional[Sequence[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Provider API base URL
            attempt_timeout: Hard ceiling for one request, in seconds
            default_model: Model used when a batch names none or an unknown one
            allowed_models: Models accepted by the provider
            http_client: Shared httpx client (one is created if omitted)
        """
        settings = get_settings()
        self.base_url = (base_url or settings.GENERATION_API_BASE_URL).rstrip("/")
        self.attempt_timeout = attempt_timeout or settings.ATTEMPT_TIMEOUT_SECONDS
        self.default_model = default_model or settings.DEFAULT_MODEL
        self.allowed_models = list(allowed_models or settings.ALLOWED_MODELS)
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.attempt_timeout))

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    def resolve_model(self, model: Optional[str]) -> str:
        """
        Pick the model to call.

        Args:
            model: Requested model

        Returns:
            str: The requested model if allowed, the default otherwise
        """
        if model and model in self.allowed_models:
            return model
        if model:
            logger.warning(f'Invalid model "{model}". Using default: {self.default_model}')
        return self.default_model

    def validate(self, prompt: str, params: GenerationParams) -> None:
        """
        Reject inputs the provider would refuse.

        Raises:
            ItemClientError: If the prompt or reference assets are invalid
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise generation_error("Valid prompt is required", FailureKind.CLIENT_ERROR)
        if len(prompt.strip()) < MIN_PROMPT_LENGTH:
            raise generation_error(
                f"Prompt is too short (minimum {MIN_PROMPT_LENGTH} characters)",
                FailureKind.CLIENT_ERROR,
            )
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise generation_error(
                f"Prompt is too long (maximum {MAX_PROMPT_LENGTH} characters)",
                FailureKind.CLIENT_ERROR,
            )
        if len(params.reference_images) > MAX_REFERENCE_IMAGES:
            raise generation_error(
                f"Too many reference images ({len(params.reference_images)}, "
                f"maximum {MAX_REFERENCE_IMAGES})",
                FailureKind.CLIENT_ERROR,
            )

    def build_request(self, prompt: str, params: GenerationParams) -> Tuple[str, Dict[str, Any]]:
        """
        Build the URL and JSON body for one item.

        Args:
            prompt: Item prompt
            params: Parameters shared by the batch

        Returns:
            Tuple[str, Dict[str, Any]]: Endpoint URL and request payload
        """
        model = self.resolve_model(params.model)

        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for image in params.reference_images:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})

        image_config: Dict[str, Any] = {"aspectRatio": params.aspect_ratio}
        # Only Pro models accept an explicit resolution
        if PRO_MODEL_MARKER in model and params.resolution:
            image_config["imageSize"] = params.resolution

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["Image"],
                "imageConfig": image_config,
            },
        }
        return f"{self.base_url}/models/{model}:generateContent", payload

    async def generate(self, prompt: str, params: GenerationParams, api_key: str) -> GeneratedArtifact:
        """
        Generate one artifact.

        Args:
            prompt: Item prompt
            params: Parameters shared by the batch
            api_key: Plaintext provider credential

        Returns:
            GeneratedArtifact: Decoded artifact and its media type

        Raises:
            ItemTransientError: Timeout, network error, 5xx, 429 or unusable 2xx body
            ItemClientError: Authentication failure or invalid input
        """
        self.validate(prompt, params)
        url, payload = self.build_request(prompt, params)
        model = url.rsplit("/", 1)[-1].split(":", 1)[0]

        started = time.monotonic()
        response = await self._post(url, payload, api_key)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if response.status_code >= 400:
            error = classify_http_error(response)
            logger.warning(
                f"Generation request failed: status={response.status_code} kind={error.kind} "
                f"model={model} elapsed_ms={elapsed_ms}"
            )
            raise error

        try:
            body = response.json()
        except ValueError:
            raise generation_error(
                "Generation service returned an unreadable response",
                FailureKind.MALFORMED_RESPONSE,
                response.status_code,
            )

        normalized = normalize_response(body)
        if not isinstance(normalized, Found):
            logger.warning(f"Generation response without artifact: {normalized.reason}")
            raise generation_error(
                normalized.reason, FailureKind.MALFORMED_RESPONSE, response.status_code
            )

        try:
            data = base64.b64decode(normalized.data)
        except (binascii.Error, ValueError):
            raise generation_error(
                "Generated image data is not valid base64",
                FailureKind.MALFORMED_RESPONSE,
                response.status_code,
            )

        logger.info(
            f"Generated artifact: model={model} media_type={normalized.media_type} "
            f"bytes={len(data)} elapsed_ms={elapsed_ms}"
        )
        return GeneratedArtifact(
            data=data,
            media_type=normalized.media_type,
            model=model,
            processing_time_ms=elapsed_ms,
        )

    async def _post(self, url: str, payload: Dict[str, Any], api_key: str) -> httpx.Response:
        """
        Send the request under the per-attempt timeout.

        Raises:
            ItemTransientError: On timeout or transport failure
        """
        try:
            return await asyncio.wait_for(
                self._http.post(
                    url,
                    json=payload,
                    headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
                    timeout=self.attempt_timeout,
                ),
                timeout=self.attempt_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise generation_error(
                "Request timeout. The image generation took too long.",
                FailureKind.TRANSIENT_NETWORK,
            )
        except httpx.TransportError as e:
            logger.warning(f"Transport error calling generation service: {type(e).__name__}")
            raise generation_error(
                "Could not reach the generation service",
                FailureKind.TRANSIENT_NETWORK,
            )
