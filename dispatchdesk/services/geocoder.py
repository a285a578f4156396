"""
Geocoder adapter for DispatchDesk
Resolves addresses through a provider chain with bounded retry.
Failures are explicit: no default coordinates are ever substituted.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from dispatchdesk.models.dispatch import GeocodeResult
from dispatchdesk.models.job import ResolvedLocation
from dispatchdesk.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Downtown Miami; only used when the user explicitly accepts it
FALLBACK_LOCATION = ResolvedLocation(lat=25.7634961, lng=-80.1905671, city=None, state=None, is_fallback=True)


class TransientGeocodeError(Exception):
    """Provider could not answer right now (network, 5xx, rate limit)"""


class GeocodeProvider:
    """One upstream geocoding API"""
    name = "provider"

    async def lookup(self, query: str) -> Optional[GeocodeResult]:
        """Return a successful result, None for not-found, or raise TransientGeocodeError."""
        raise NotImplementedError

    async def _get_json(self, url: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self.transport) as client:
                r = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise TransientGeocodeError(f"{self.name} request failed: {e}") from e
        if r.status_code >= 500 or r.status_code == 429:
            raise TransientGeocodeError(f"{self.name} returned {r.status_code}")
        if r.status_code >= 400:
            logger.warning(f"[Geocode] {self.name} rejected query with {r.status_code}")
            return None
        return r.json()


class GoogleGeocoder(GeocodeProvider):
    """Google Geocoding API; only street-level results are accepted"""
    name = "google"
    url = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(self, api_key: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def lookup(self, query: str) -> Optional[GeocodeResult]:
        data = await self._get_json(self.url, {"address": query, "key": self.api_key})
        if not data:
            return None
        status = data.get("status")
        if status in ("OVER_QUERY_LIMIT", "UNKNOWN_ERROR"):
            raise TransientGeocodeError(f"google status {status}")
        if status != "OK" or not data.get("results"):
            logger.warning(f"[Geocode] Google returned: {status} {data.get('error_message', '')}")
            return None

        result = data["results"][0]
        comps: List[Dict[str, Any]] = result.get("address_components") or []
        has_street = any(
            "street_number" in c.get("types", []) or "route" in c.get("types", []) for c in comps
        )
        if not has_street:
            logger.warning(f"[Geocode] Google result missing street address: {result.get('formatted_address')}")
            return None

        loc = result["geometry"]["location"]
        city = next((c.get("long_name") for c in comps if "locality" in c.get("types", [])), None)
        state = next((c.get("short_name") for c in comps if "administrative_area_level_1" in c.get("types", [])), None)
        return GeocodeResult(success=True, lat=loc["lat"], lng=loc["lng"], city=city, state=state, provider=self.name)


class NominatimGeocoder(GeocodeProvider):
    """OpenStreetMap Nominatim search"""
    name = "nominatim"
    url = "https://nominatim.openstreetmap.org/search"

    def __init__(self, user_agent: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.user_agent = user_agent
        self.timeout = timeout
        self.transport = transport

    async def lookup(self, query: str) -> Optional[GeocodeResult]:
        data = await self._get_json(
            self.url,
            {"format": "json", "q": query, "limit": 1, "addressdetails": 1},
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
        )
        if not data:
            return None
        hit = data[0]
        address = hit.get("address") or {}
        city = address.get("city") or address.get("town") or address.get("village")
        iso = address.get("ISO3166-2-lvl4") or ""
        state = iso.split("-")[-1] if iso.startswith("US-") else None
        return GeocodeResult(
            success=True, lat=float(hit["lat"]), lng=float(hit["lon"]), city=city, state=state, provider=self.name
        )


class GeocoderAdapter:
    """Provider chain wrapped in an explicit retry policy"""

    def __init__(self, providers: Sequence[GeocodeProvider], retry_policy: Optional[RetryPolicy] = None):
        self.providers = list(providers)
        self.retry_policy = retry_policy or RetryPolicy(max_retries=2, initial_delay=0.5)

    async def geocode(self, address_text: str) -> GeocodeResult:
        query = (address_text or "").strip()
        if not query:
            return GeocodeResult.failure("empty_address")
        if not self.providers:
            logger.error("[Geocode] No geocoding providers configured")
            return GeocodeResult.failure("not_configured")

        try:
            result = await self.retry_policy.run(
                lambda: self._attempt(query),
                retryable=(TransientGeocodeError,),
                label=f"geocode '{query}'",
            )
        except TransientGeocodeError:
            return GeocodeResult.failure("provider_unavailable")

        if result is None:
            logger.warning(f"[Geocode] No results for: {query}")
            return GeocodeResult.failure("not_found")
        logger.info(f"[Geocode] {result.provider} success: {query} -> {result.lat}, {result.lng}")
        return result

    async def _attempt(self, query: str) -> Optional[GeocodeResult]:
        """One pass over the chain; raises only if nobody answered and someone was transient."""
        transient: Optional[TransientGeocodeError] = None
        for provider in self.providers:
            try:
                result = await provider.lookup(query)
            except TransientGeocodeError as e:
                logger.warning(f"[Geocode] {provider.name} error: {e}")
                transient = e
                continue
            if result is not None:
                return result
        if transient is not None:
            raise transient
        return None


def build_geocoder(google_key: Optional[str], nominatim_user_agent: str, retry_policy: Optional[RetryPolicy] = None) -> GeocoderAdapter:
    providers: List[GeocodeProvider] = []
    if google_key:
        providers.append(GoogleGeocoder(google_key))
    providers.append(NominatimGeocoder(nominatim_user_agent))
    return GeocoderAdapter(providers, retry_policy)
