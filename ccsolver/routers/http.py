"""
Shared aiohttp client for aggregator REST APIs.
"""

from typing import Any, Dict, Optional

import aiohttp

from ccsolver.core.errors import SimulationFailed


class ApiClient:
    """
    JSON GET/POST against one base URL.

    HTTP and decoding failures surface as SimulationFailed, since every
    caller is on a quoting or route-building path.
    """

    def __init__(self, base_url: str, timeout: float = 15.0, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            params = {key: str(value) for key, value in params.items() if value is not None}

        try:
            async with session.request(method, url, params=params, json=json) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    raise SimulationFailed(f"{method} {url} failed: status={response.status} body={body}")
        except aiohttp.ClientError as e:
            raise SimulationFailed(f"{method} {url} failed: {e}") from e
        except ValueError as e:
            raise SimulationFailed(f"{method} {url} returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise SimulationFailed(f"{method} {url} returned unexpected body {body!r}")
        return body

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(
        self,
        path: str,
        json: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self.request("POST", path, params=params, json=json)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
