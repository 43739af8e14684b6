"""Bitcoin RPC client for bitcoin-alerts."""

import json
import requests
from typing import Any

from .constants import DEFAULT_RPC_TIMEOUT_SECS


class RPCError(Exception):
    """Raised when the node answers a call with a JSON-RPC error."""
    def __init__(self, method: str, error: Any):
        self.method = method
        self.error = error
        if isinstance(error, dict):
            self.code = error.get("code")
            message = error.get("message", str(error))
        else:
            self.code = None
            message = str(error)
        super().__init__(f"{method}: {message}")


class RPCClient:
    """Bitcoin RPC client with persistent session."""

    def __init__(self, url: str, user: str, password: str, timeout: float = DEFAULT_RPC_TIMEOUT_SECS):
        """
        Initialize RPC client.

        Args:
            url: RPC URL (e.g., "http://127.0.0.1:8332")
            user: RPC username
            password: RPC password
            timeout: Seconds to wait for each call before giving up
        """
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["content-type"] = "application/json"
        self.session.auth = (user, password)

    def call(self, method: str, *params: Any) -> Any:
        """
        Make an RPC call.

        Args:
            method: RPC method name
            *params: RPC method parameters

        Returns:
            RPC result

        Raises:
            RPCError: If RPC returns an error
            requests.RequestException: If HTTP request fails or times out
        """
        payload = {
            "jsonrpc": "1.0",
            "id": "bitcoin-alerts",
            "method": method,
            "params": list(params)
        }
        response = self.session.post(self.url, data=json.dumps(payload), timeout=self.timeout)
        # bitcoind reports RPC errors with HTTP 500 and a JSON body
        if response.status_code >= 400 and "application/json" not in response.headers.get("content-type", ""):
            response.raise_for_status()
        result = response.json()

        if result.get("error"):
            raise RPCError(method, result["error"])

        return result["result"]

    def close(self):
        """Close the underlying HTTP session."""
        self.session.close()
