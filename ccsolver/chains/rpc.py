"""
Minimal JSON-RPC 2.0 client over aiohttp, shared by the ledger adapters.
"""

import itertools
from typing import Any, List, Optional

import aiohttp

from ccsolver.chains.base import ChainError


class RpcError(ChainError):
    """The node answered with a JSON-RPC error or an HTTP failure."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        super().__init__(f"RPC {method} failed: {message}")
        self.method = method
        self.code = code


class JsonRpcClient:
    """
    Lazily opened HTTP session posting JSON-RPC requests.

    Args:
        url: Node endpoint
        timeout: Per-request timeout in seconds
    """

    def __init__(self, url: str, timeout: float = 30.0, session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Perform one RPC call.

        Returns:
            The ``result`` member of the response

        Raises:
            RpcError: on HTTP status >= 400, a non-object body or an ``error`` member
        """
        session = await self._get_session()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            async with session.post(self.url, json=payload) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    raise RpcError(method, f"status={response.status} body={body}")
        except aiohttp.ClientError as e:
            raise RpcError(method, str(e)) from e

        if not isinstance(body, dict):
            raise RpcError(method, f"invalid response {body!r}")

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", error) if isinstance(error, dict) else error
            raise RpcError(method, str(message), code=code)

        return body.get("result")

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
