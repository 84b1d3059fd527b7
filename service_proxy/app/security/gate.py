"""
Origin allowlist and shared-secret enforcement.
"""

import hmac
from typing import List, Mapping

from shared.config import ProxyConfig
from shared.errors import AuthenticationError, AuthorizationError

ORIGIN_HEADERS = ("origin", "referer")
SECRET_HEADERS = ("x-proxy-key", "x-api-key")


class SecurityGate:
    """Pure checks over request headers; no side effects.

    Each check is active only when its setting is non-empty.
    """

    def __init__(self, allowed_origins: List[str], api_key: str = ""):
        self.allowed_origins = [origin for origin in allowed_origins if origin]
        self.api_key = api_key

    @classmethod
    def from_config(cls, config: ProxyConfig) -> "SecurityGate":
        return cls(config.allowed_origin_list, config.api_key)

    def authorize(self, headers: Mapping[str, str]) -> None:
        """Raise AuthorizationError (403) or AuthenticationError (401)."""
        normalized = {key.lower(): value for key, value in headers.items()}
        self.check_origin(normalized)
        self.check_secret(normalized)

    def check_origin(self, headers: Mapping[str, str]) -> None:
        if not self.allowed_origins:
            return
        origin = _first_header(headers, ORIGIN_HEADERS)
        if not any(allowed in origin for allowed in self.allowed_origins):
            raise AuthorizationError(details={"origin": origin})

    def check_secret(self, headers: Mapping[str, str]) -> None:
        if not self.api_key:
            return
        presented = _first_header(headers, SECRET_HEADERS)
        if not hmac.compare_digest(presented.encode("utf-8"), self.api_key.encode("utf-8")):
            raise AuthenticationError()


def _first_header(headers: Mapping[str, str], names) -> str:
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return ""
