"""HTTP client for the executions API."""
import logging
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

import httpx

from batchforge.config import get_settings
from batchforge.core.exceptions import ExecutionNotFoundError, InvalidStateTransitionError

logger = logging.getLogger(__name__)


class ExecutionsApiClient:
    """
    Thin async wrapper over the submit, status and cancel endpoints.

    Responses are unwrapped from the standard envelope; only ``data`` is
    returned.
    """

    def __init__(
        self,
        base_url: str,
        api_prefix: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize client.

        Args:
            base_url: Service root, e.g. ``http://localhost:8000``
            api_prefix: API version prefix (defaults to API_V1_PREFIX)
            http_client: Shared httpx client (one is created if omitted)
            timeout: Request timeout in seconds for a created client
        """
        prefix = api_prefix if api_prefix is not None else get_settings().API_V1_PREFIX
        self.base_url = base_url.rstrip("/") + prefix
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "ExecutionsApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def submit(
        self,
        items: List[Union[str, Dict[str, Any]]],
        params: Optional[Dict[str, Any]] = None,
        encrypted_credential: Optional[Dict[str, str]] = None,
    ) -> UUID:
        """
        Submit a batch.

        Args:
            items: Prompts, as strings or ``{"prompt": ...}`` objects
            params: Shared generation parameters
            encrypted_credential: Encrypted provider credential

        Returns:
            UUID: Id of the new execution
        """
        payload: Dict[str, Any] = {
            "items": [{"prompt": item} if isinstance(item, str) else item for item in items],
            "params": params or {},
        }
        if encrypted_credential is not None:
            payload["encrypted_credential"] = encrypted_credential

        data = await self._request("POST", "/executions", json=payload)
        return UUID(data["execution_id"])

    async def get(self, execution_id: UUID) -> Dict[str, Any]:
        """
        Fetch the full execution record.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        return await self._request("GET", f"/executions/{execution_id}")

    async def cancel(self, execution_id: UUID) -> Dict[str, Any]:
        """
        Request cancellation.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
            InvalidStateTransitionError: If the execution is already terminal
        """
        return await self._request("POST", f"/executions/{execution_id}/cancel")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._http.request(method, f"{self.base_url}{path}", **kwargs)

        if response.status_code in (400, 404):
            description = _error_description(response)
            if response.status_code == 404:
                raise ExecutionNotFoundError(description)
            raise InvalidStateTransitionError(description)

        response.raise_for_status()
        return response.json()["data"]


def _error_description(response: httpx.Response) -> str:
    # Errors arrive as {"detail": {data, code, httpStatus, description}}
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text
    if isinstance(detail, dict):
        return detail.get("description") or str(detail)
    return str(detail)
