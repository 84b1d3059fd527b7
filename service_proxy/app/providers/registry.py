"""
Static catalog of upstream weather providers.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from shared.errors import UnsupportedProviderError


@dataclass(frozen=True)
class ProviderConfig:
    """Parameter contract for one upstream provider.

    ``allowed_params`` is ordered: it fixes the canonical query order and
    therefore the cache key, independent of client parameter order.
    """

    provider_id: str
    base_url: str
    allowed_params: Tuple[str, ...]
    cache_prefix: str
    required_params: Tuple[str, ...] = ()
    numeric_params: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    credential_param: Optional[str] = None
    credential_setting: Optional[str] = None

    @property
    def requires_credential(self) -> bool:
        return self.credential_param is not None


OPEN_METEO = ProviderConfig(
    provider_id="open-meteo",
    aliases=("openm", "mete"),
    base_url="https://api.open-meteo.com/v1/forecast",
    allowed_params=(
        "latitude",
        "longitude",
        "current_weather",
        "hourly",
        "daily",
        "timezone",
        "forecast_days",
    ),
    required_params=("latitude", "longitude"),
    numeric_params=("latitude", "longitude"),
    cache_prefix="om",
)

OPEN_WEATHER_MAP = ProviderConfig(
    provider_id="openweathermap",
    aliases=("owm",),
    base_url="https://api.openweathermap.org/data/2.5/weather",
    allowed_params=("lat", "lon", "q", "units", "lang"),
    numeric_params=("lat", "lon"),
    credential_param="appid",
    credential_setting="openweather_key",
    cache_prefix="owm",
)

OPEN_METEO_GEOCODING = ProviderConfig(
    provider_id="open-meteo-geocoding",
    aliases=("geocode",),
    base_url="https://geocoding-api.open-meteo.com/v1/search",
    allowed_params=("name", "count", "language", "format"),
    required_params=("name",),
    numeric_params=("count",),
    cache_prefix="geo",
)

DEFAULT_PROVIDERS = (OPEN_METEO, OPEN_WEATHER_MAP, OPEN_METEO_GEOCODING)
DEFAULT_PROVIDER_ID = OPEN_METEO.provider_id


class ProviderRegistry:
    """Case-insensitive lookup of provider contracts by id or alias."""

    def __init__(
        self,
        providers: Iterable[ProviderConfig] = DEFAULT_PROVIDERS,
        default_provider_id: str = DEFAULT_PROVIDER_ID,
    ):
        self._providers: Dict[str, ProviderConfig] = {}
        self._lookup: Dict[str, str] = {}

        for provider in providers:
            self._providers[provider.provider_id] = provider
            for name in (provider.provider_id,) + provider.aliases:
                self._lookup[name.lower()] = provider.provider_id

        if default_provider_id.lower() not in self._lookup:
            raise ValueError(f"Default provider {default_provider_id!r} is not registered")
        self.default_provider_id = self._lookup[default_provider_id.lower()]

    def resolve(self, provider_id: Optional[str]) -> ProviderConfig:
        """Resolve a provider id or alias; empty falls back to the default."""
        name = (provider_id or "").strip().lower()
        if not name:
            return self._providers[self.default_provider_id]

        canonical = self._lookup.get(name)
        if canonical is None:
            raise UnsupportedProviderError(details={"provider": provider_id})
        return self._providers[canonical]

    def provider_ids(self) -> Tuple[str, ...]:
        return tuple(self._providers)
