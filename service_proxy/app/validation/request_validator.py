"""
Request validation and canonicalization for proxied provider calls.
"""

import math
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
from urllib.parse import urlencode

from shared.config import ProxyConfig
from shared.errors import ConfigurationError, ValidationError
from shared.logging import get_logger
from ..providers.registry import ProviderConfig

# Plain decimal or exponent notation; ASCII digits only.
NUMBER_PATTERN = re.compile(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?\s*", re.ASCII)


@dataclass(frozen=True)
class NormalizedRequest:
    """Whitelisted, ordered parameters plus the cache key derived from them."""

    provider_id: str
    params: Tuple[Tuple[str, str], ...]
    canonical_query: str
    cache_key: str
    identity: str = "unknown"


class RequestValidator:
    """Whitelists and type-checks parameters against a provider contract."""

    def __init__(self, config: ProxyConfig):
        self.config = config
        self.logger = get_logger("proxy.validator")

    def validate(self, provider: ProviderConfig, raw_params: Mapping[str, str]) -> NormalizedRequest:
        """Normalize ``raw_params`` or raise ValidationError/ConfigurationError."""
        accepted = {
            name: str(raw_params[name])
            for name in provider.allowed_params
            if raw_params.get(name) not in (None, "")
        }

        dropped = sorted(set(raw_params) - set(accepted) - {"provider"})
        if dropped:
            self.logger.debug("Dropped unlisted parameters", provider=provider.provider_id, dropped=dropped)

        for name in provider.required_params:
            if name not in accepted:
                raise ValidationError(f"Missing {name}", details={"field": name})

        for name in provider.numeric_params:
            if name in accepted and not _is_number(accepted[name]):
                raise ValidationError(f"Invalid {name}", details={"field": name})

        if provider.requires_credential and not self.credential_for(provider):
            raise ConfigurationError(
                "Missing server API key. Set OPENWEATHER_KEY in the environment.",
                details={"provider": provider.provider_id},
            )

        params = tuple((name, accepted[name]) for name in provider.allowed_params if name in accepted)
        canonical_query = urlencode(params)

        return NormalizedRequest(
            provider_id=provider.provider_id,
            params=params,
            canonical_query=canonical_query,
            cache_key=f"{provider.cache_prefix}:{canonical_query}",
        )

    def credential_for(self, provider: ProviderConfig) -> Optional[str]:
        """Server-held credential for ``provider``, or None when unset."""
        if not provider.credential_setting:
            return None
        value = getattr(self.config, provider.credential_setting, "") or ""
        return value or None


def _is_number(value: str) -> bool:
    if NUMBER_PATTERN.fullmatch(value) is None:
        return False
    return math.isfinite(float(value))
