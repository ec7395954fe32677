import requests
from typing import Any, Dict, Optional

from ..errors import FormatError, NetworkError

DEFAULT_USER_AGENT = "threatfeed-engine/0.1"


class Http:
    """Single-shot HTTP client. Retry and deadline handling belong to the orchestrator."""

    def __init__(self, timeout: float = 30, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    def _headers(self, headers: Optional[Dict]) -> Dict:
        merged = {"User-Agent": self.user_agent}
        if headers:
            merged.update(headers)
        return merged

    def _send(self, method: str, url: str, headers: Optional[Dict] = None, **kwargs) -> requests.Response:
        try:
            r = requests.request(method, url, headers=self._headers(headers), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e
        if r.status_code == 429:  # rate limit
            raise NetworkError(f"{method} {url} rate limited")
        if r.status_code >= 400:
            raise NetworkError(f"{method} {url} returned HTTP {r.status_code}")
        return r

    @staticmethod
    def _decode(r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise FormatError(f"{r.url} did not return JSON: {e}") from e

    def get_json(self, url: str, headers: Optional[Dict] = None, params: Optional[Dict] = None) -> Any:
        headers = {"Accept": "application/json", **(headers or {})}
        return self._decode(self._send("GET", url, headers=headers, params=params))

    def post_json(self, url: str, json_body: Optional[Dict] = None, data: Optional[Dict] = None,
                  headers: Optional[Dict] = None) -> Any:
        headers = {"Accept": "application/json", **(headers or {})}
        return self._decode(self._send("POST", url, headers=headers, json=json_body, data=data))

    def get_text(self, url: str, headers: Optional[Dict] = None, params: Optional[Dict] = None) -> str:
        return self._send("GET", url, headers=headers, params=params).text
