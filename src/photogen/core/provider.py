"""HTTP client for the Nano Banana image provider (kie.ai jobs API).

The provider is asynchronous: ``createTask`` returns a job id immediately and
the finished result is delivered later to the ``callBackUrl`` webhook.  The
job can also be queried through ``recordInfo``.

Both endpoints wrap their payload in an envelope::

    {"code": 200, "msg": "success", "data": {...}}

Any deviation (non-2xx status, non-JSON body, ``code != 200``, missing
``taskId``) is raised as :class:`~photogen.core.errors.AIServiceError` with a
specific ``code`` so callers can tell outages from bad requests.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from photogen.core.config import PhotogenConfig
from photogen.core.errors import AIServiceError
from photogen.core.models import ProviderTaskStatus

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhook/nano-banana"

# (label, api value, ratio) for every size the provider accepts.
_IMAGE_SIZES: list[tuple[str, str, float | None]] = [
    ("Auto", "auto", None),
    ("Square (1:1)", "1:1", 1.0),
    ("Portrait (3:4)", "3:4", 0.75),
    ("Portrait (9:16)", "9:16", 0.5625),
    ("Landscape (4:3)", "4:3", 1.333),
    ("Landscape (16:9)", "16:9", 1.778),
]
_RATIO_TOLERANCE = 0.1


def map_image_size(width: int | None, height: int | None) -> str:
    """Map pixel dimensions to the closest provider ``image_size`` value.

    Returns ``"auto"`` when either dimension is missing or no supported
    ratio lies within the tolerance.
    """
    if not width or not height:
        return "auto"
    ratio = width / height
    for _, value, target in _IMAGE_SIZES:
        if target is not None and abs(ratio - target) < _RATIO_TOLERANCE:
            return value
    return "auto"


def parse_result_urls(result_json: Any) -> list[str]:
    """Extract ``resultUrls`` from a provider ``resultJson`` field.

    The provider sends ``resultJson`` as a JSON-encoded string; an already
    decoded mapping is accepted as well.

    Raises:
        ValueError: If the value is not valid JSON.
    """
    if not result_json:
        return []
    if isinstance(result_json, str):
        result_json = json.loads(result_json)
    if not isinstance(result_json, dict):
        return []
    urls = result_json.get("resultUrls") or []
    return [url for url in urls if isinstance(url, str) and url]


def build_webhook_url(config: PhotogenConfig) -> str:
    """Return the callback URL the provider should post results to.

    A bare host in ``webhook_base_url`` gets an ``https://`` scheme.  Without
    a base URL the localhost address is returned, which the provider cannot
    reach; results then only arrive through status queries.
    """
    base = config.webhook_base_url
    if not base:
        logger.warning("No webhook base URL configured, the provider cannot reach us")
        return f"http://localhost:{config.server_port}{WEBHOOK_PATH}"
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    return f"{base.rstrip('/')}{WEBHOOK_PATH}"


def friendly_error_message(error: Exception) -> str:
    """Translate a task submission failure into a message for the user."""
    message = str(error) or "Task initialization failed"
    code = getattr(error, "code", None) or ""

    if "returned HTML" in message:
        return "AI service is currently down for maintenance. Please try again in a few minutes."
    if "returned empty response" in message:
        return "AI service connection timeout. Please try again."
    if code == "INVALID_JSON" or "Invalid JSON response" in message:
        return "AI service temporarily unavailable. Please try again later."
    if code == "NETWORK_ERROR":
        return "Network connection failed. Please check your internet connection."
    if code.startswith("HTTP_"):
        return "AI service is experiencing issues. Please try again later."
    if code == "MISSING_API_KEY":
        return "Service configuration error. Please contact support."
    if code == "REQUEST_TIMEOUT" or "timeout" in message.lower():
        return "AI service request timed out. Please try again."
    return message


class ProviderClient:
    """Thin async wrapper over the provider jobs API.

    Args:
        config: Application configuration.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).

    Raises:
        AIServiceError: ``MISSING_API_KEY`` when no API key is configured.
    """

    def __init__(self, config: PhotogenConfig, transport: httpx.AsyncBaseTransport | None = None):
        if not config.provider_api_key:
            raise AIServiceError("Provider API key is required", "MISSING_API_KEY")
        self.config = config
        self.base_url = config.provider_base_url.rstrip("/")
        self._transport = transport
        logger.info(
            f"Provider client initialised (base_url={self.base_url}, "
            f"api_key_length={len(config.provider_api_key)})"
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.provider_api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.config.provider_request_timeout,
            transport=self._transport,
        )

    def get_webhook_url(self) -> str:
        """Return the callback URL registered with every new job."""
        return build_webhook_url(self.config)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the ``data`` object of the envelope."""
        url = f"{self.base_url}/{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as e:
            raise AIServiceError(
                "Request timeout: AI service is taking too long to respond",
                "REQUEST_TIMEOUT",
                {"endpoint": url},
            ) from e
        except httpx.HTTPError as e:
            raise AIServiceError(
                f"Network error: {e}", "NETWORK_ERROR", {"endpoint": url}
            ) from e

        text = response.text
        logger.info(f"Provider {method} {path} -> {response.status_code}")
        if not response.is_success:
            logger.error(f"Provider error response: {text[:500]}")
            raise AIServiceError(
                f"Provider API error ({response.status_code}): {text[:200]}",
                f"HTTP_{response.status_code}",
                {"responseText": text[:500]},
            )

        try:
            body = response.json()
        except ValueError as e:
            stripped = text.strip()
            if stripped.startswith(("<!DOCTYPE", "<html")):
                message = "API service returned HTML instead of JSON (service may be down)"
            elif not stripped:
                message = "API service returned empty response"
            else:
                suffix = "..." if len(text) > 200 else ""
                message = f"Invalid JSON response from provider API. Response: {text[:200]}{suffix}"
            raise AIServiceError(
                message,
                "INVALID_JSON",
                {"responseText": text[:500], "responseStatus": response.status_code},
            ) from e

        if not isinstance(body, dict) or body.get("code") != 200:
            code = body.get("code") if isinstance(body, dict) else None
            msg = body.get("msg") if isinstance(body, dict) else None
            raise AIServiceError(f"Provider request failed: {msg}", f"API_ERROR_{code}", {"body": body})

        data = body.get("data")
        if not isinstance(data, dict):
            raise AIServiceError("Invalid response: missing data", "INVALID_RESPONSE", {"body": body})
        return data

    async def _create_task(self, payload: dict[str, Any]) -> str:
        logger.info(
            f"Creating provider task (model={payload['model']}, "
            f"prompt={payload['input']['prompt'][:100]!r})"
        )
        data = await self._request("POST", "createTask", json=payload)
        task_id = data.get("taskId")
        if not task_id:
            raise AIServiceError("Invalid response: missing taskId", "INVALID_RESPONSE", {"data": data})
        logger.info(f"Provider task created: {task_id}")
        return task_id

    async def create_generate_task(
        self, prompt: str, width: int | None = None, height: int | None = None
    ) -> str:
        """Submit a text-to-image job and return the provider task id."""
        payload = {
            "model": self.config.provider_generate_model,
            "input": {
                "prompt": prompt,
                "output_format": "png",
                "image_size": map_image_size(width, height),
            },
            "callBackUrl": self.get_webhook_url(),
        }
        return await self._create_task(payload)

    async def create_edit_task(
        self, prompt: str, image_urls: list[str], strength: float | None = None
    ) -> str:
        """Submit an image editing job and return the provider task id."""
        if not image_urls:
            raise AIServiceError("At least one input image is required", "MISSING_INPUT_IMAGE")
        payload = {
            "model": self.config.provider_edit_model,
            "input": {
                "prompt": prompt,
                "image_urls": image_urls[: self.config.max_input_images],
                "output_format": "png",
                "image_size": "auto",
                "strength": strength if strength is not None else self.config.default_strength,
            },
            "callBackUrl": self.get_webhook_url(),
        }
        return await self._create_task(payload)

    async def get_task_status(self, provider_task_id: str) -> ProviderTaskStatus:
        """Query the provider for the current state of a job."""
        data = await self._request("GET", "recordInfo", params={"taskId": provider_task_id})
        try:
            result_urls = parse_result_urls(data.get("resultJson"))
        except ValueError:
            logger.warning(f"Unparseable resultJson for provider task {provider_task_id}")
            result_urls = []
        return ProviderTaskStatus(
            task_id=data.get("taskId") or provider_task_id,
            state=data.get("state") or "waiting",
            model=data.get("model"),
            result_urls=result_urls,
            fail_code=data.get("failCode") or None,
            fail_msg=data.get("failMsg") or None,
            cost_time=data.get("costTime"),
            complete_time=data.get("completeTime"),
            create_time=data.get("createTime"),
        )

    async def test_connection(self) -> dict[str, Any]:
        """Send a minimal request to the createTask endpoint.

        Returns:
            Dictionary with ``success`` and either ``details`` or ``error``.
        """
        payload = {
            "model": self.config.provider_edit_model,
            "input": {
                "prompt": "simple test",
                "image_urls": ["https://via.placeholder.com/512x512.png"],
                "output_format": "png",
                "image_size": "auto",
            },
        }
        try:
            async with self._client(timeout=10.0) as client:
                response = await client.post(
                    f"{self.base_url}/createTask", headers=self._headers, json=payload
                )
        except httpx.HTTPError as e:
            logger.error(f"Provider connection test failed: {e}")
            return {"success": False, "error": str(e)}
        return {
            "success": response.is_success,
            "details": {"status": response.status_code, "responseText": response.text[:200]},
        }

    async def health_check(self) -> bool:
        result = await self.test_connection()
        return bool(result["success"])

    @staticmethod
    def supported_sizes() -> list[dict[str, str]]:
        return [{"label": label, "value": value} for label, value, _ in _IMAGE_SIZES]


def available_models(config: PhotogenConfig) -> list[str]:
    return [config.provider_generate_model, config.provider_edit_model]


def validate_generation_params(prompt: str | None, config: PhotogenConfig) -> list[str]:
    """Return validation errors for a generate request (empty when valid)."""
    errors: list[str] = []
    if not prompt or not prompt.strip():
        errors.append("Prompt must not be empty")
    elif len(prompt) > config.max_prompt_length:
        errors.append(f"Prompt is too long (max {config.max_prompt_length} characters)")
    return errors


def validate_edit_params(
    prompt: str | None, image_urls: list[str] | None, config: PhotogenConfig
) -> list[str]:
    """Return validation errors for an edit request (empty when valid)."""
    errors: list[str] = []
    if not image_urls or not any(url and url.strip() for url in image_urls):
        errors.append("Input image is required for editing")
    elif len(image_urls) > config.max_input_images:
        errors.append(f"At most {config.max_input_images} input images are allowed")
    if not prompt or not prompt.strip():
        errors.append("Prompt must not be empty")
    elif len(prompt) > config.max_edit_prompt_length:
        errors.append(f"Prompt is too long (max {config.max_edit_prompt_length} characters)")
    return errors
