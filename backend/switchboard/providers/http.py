from typing import Any, Dict, Optional

import httpx

from switchboard.core.config import Settings
from switchboard.core.exceptions import ProviderError, ProviderNotConfiguredError
from switchboard.providers.base import BaseProvider
from switchboard.providers.catalog import ModelCatalog


class HTTPProvider(BaseProvider):
    """Base for providers reached over plain HTTP with a bearer token."""

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(settings, catalog)
        self._http = http_client

    @property
    def base_url(self) -> str:
        url = self._settings.api_url_for(self.provider_name)
        if not url:
            raise ProviderNotConfiguredError(self.provider_name)
        return url.rstrip("/")

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._settings.provider_timeout_seconds)
        return self._http

    def headers(self, streaming: bool = False) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if streaming:
            headers["Accept"] = "text/event-stream"
        return headers

    async def raise_for_status(self, response: httpx.Response) -> None:
        """Raise with the upstream body attached; works for streamed responses too."""
        if response.is_success:
            return
        body = (await response.aread()).decode(errors="replace")
        if response.status_code in (401, 403, 429):
            # Let classification read status and Retry-After from the response.
            raise httpx.HTTPStatusError(body[:500], request=response.request, response=response)
        raise ProviderError(
            f"{self.provider_name} API error ({response.status_code})",
            self.provider_name,
            original_status=response.status_code,
            details={"original_error": body[:500]},
        )

    async def post_json(self, path: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        response = await self.http.post(
            f"{self.base_url}{path}",
            json=payload,
            headers=self.headers(),
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        await self.raise_for_status(response)
        return response.json()

    async def health_check(self) -> bool:
        try:
            response = await self.http.get(f"{self.base_url}/health", headers=self.headers())
            return response.is_success
        except Exception:
            return False

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
