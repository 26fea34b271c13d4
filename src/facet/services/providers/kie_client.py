"""Kie.ai HTTP client for task submission and status polling."""

from typing import Any, Optional

import httpx
import structlog

from facet.services.exceptions import NoTaskIdError, ProviderRejectedError, TransportError
from facet.services.providers.result_extractor import extract_result_url, extract_task_id

logger = structlog.get_logger()


class SubmitResult:
    """Outcome of an accepted submission."""

    def __init__(self, task_id: str, payload: dict[str, Any], result_url: Optional[str] = None):
        self.task_id = task_id
        self.payload = payload
        # Some models answer synchronously with the finished image
        self.result_url = result_url


class KieClient:
    """Provider client for Kie.ai task endpoints.

    Error classification:
        - Network failure / timeout → TransportError (no status code)
        - Non-2xx response → TransportError("API error: <status>", status_code)
        - 2xx with ``code != 200`` → ProviderRejectedError (``msg``/``message`` as reason)
        - Accepted without a task id → NoTaskIdError
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Kie.ai client.

        Args:
            api_key: Kie.ai API key (from KIE_AI_API_KEY env var)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=self.headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout after {self.timeout}s: {e}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"Network error: {e}")

        if not response.is_success:
            raise TransportError(f"API error: {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            raise TransportError(
                f"Invalid JSON from provider ({response.status_code})",
                status_code=response.status_code,
            )
        if not isinstance(payload, dict):
            raise TransportError("Unexpected provider response shape")
        return payload

    async def submit(self, config, body: dict[str, Any]) -> SubmitResult:
        """Submit a task to the model's submit endpoint.

        Args:
            config: Registry entry (ModelConfig)
            body: Request body from build_request

        Returns:
            SubmitResult with the provider task id

        Raises:
            TransportError: Network failure or non-2xx response
            ProviderRejectedError: API-level error code in a 2xx body
            NoTaskIdError: Response carried no task id
        """
        payload = await self._request("POST", config.submit_endpoint, json=body)

        code = payload.get("code")
        if code is not None and code != 200:
            message = payload.get("message") or payload.get("msg") or f"Provider error code {code}"
            logger.warning("provider.submit_rejected", model=config.id, code=code, message=message)
            raise ProviderRejectedError(message, code=str(code))

        task_id = extract_task_id(payload, config.task_id_path)
        if not task_id:
            raise NoTaskIdError("No task ID received from provider")

        result_url = extract_result_url(payload, config.result_url_paths)
        logger.info("provider.submitted", model=config.id, task_id=task_id)
        return SubmitResult(task_id=task_id, payload=payload, result_url=result_url)

    async def get_status(self, config, task_id: str) -> dict[str, Any]:
        """Fetch the raw task status payload.

        Raises:
            TransportError: Network failure or non-2xx response
        """
        return await self._request("GET", config.status_endpoint, params={"taskId": task_id})
