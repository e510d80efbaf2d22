"""DataForSEO API integration for keyword volume, suggestions AND competitor data.

Single provider for all keyword research data: Google Ads keyword endpoints for
volume, CPC and traffic projections, and DataForSEO Labs for SERP-derived
suggestions, competitor rankings and domain intersections.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.config import settings
from app.core.exceptions import APIKeyMissingError, ExternalAPIError, RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LocationInfo:
    code: int
    language: str
    name: str


LOCATION_CODES: dict[str, LocationInfo] = {
    "GB": LocationInfo(code=2826, language="en", name="United Kingdom"),
    "US": LocationInfo(code=2840, language="en", name="United States"),
    "DE": LocationInfo(code=2276, language="de", name="Germany"),
    "AU": LocationInfo(code=2036, language="en", name="Australia"),
    "CA": LocationInfo(code=2124, language="en", name="Canada"),
    "FR": LocationInfo(code=2250, language="fr", name="France"),
}

_COMPETITION_LABELS = {"LOW": 0.15, "MEDIUM": 0.45, "HIGH": 0.80}

_TRANSACTIONAL_SIGNALS = (
    "buy", "purchase", "order", "pricing", "price", "cost", "cheap",
    "affordable", "deal", "discount", "coupon", "trial", "demo", "signup",
    "sign up", "subscribe", "download", "get", "start", "alternative",
    "vs", "versus", "compare", "switch", "migrate", "integration",
    "quickbooks", "xero", "sage", "netsuite",
)
_INFORMATIONAL_SIGNALS = (
    "what is", "how to", "guide", "tutorial", "tips", "best practices",
    "examples", "definition", "meaning", "why", "benefits", "advantages",
    "overview", "introduction", "learn", "understand", "explain",
    "reduce", "improve", "optimize",
)
_NAVIGATIONAL_SIGNALS = (
    "login", "log in", "sign in", "portal", "dashboard", "account",
    "support", "contact", "help",
)


def get_location(country_code: str) -> LocationInfo:
    """Resolve a two-letter country code to a DataForSEO location."""
    location = LOCATION_CODES.get((country_code or "").upper())
    if location is None:
        raise ExternalAPIError("DataForSEO", f"Unsupported country code: {country_code}")
    return location


def infer_intent(keyword: str) -> str:
    """Infer search intent from keyword wording.

    Google Ads endpoints carry no intent data, so signals are checked in order:
    transactional, informational, navigational; anything else is commercial.
    """
    kw = (keyword or "").lower()
    if any(signal in kw for signal in _TRANSACTIONAL_SIGNALS):
        return "transactional"
    if any(signal in kw for signal in _INFORMATIONAL_SIGNALS):
        return "informational"
    if any(signal in kw for signal in _NAVIGATIONAL_SIGNALS):
        return "navigational"
    return "commercial"


def _trend(monthly_searches: list[dict[str, Any]] | None) -> list[int]:
    return [m.get("search_volume") or 0 for m in (monthly_searches or [])[:12]][::-1]


def normalize_keyword_result(result: dict[str, Any] | None) -> dict[str, Any] | None:
    """Normalize a Google Ads keyword item."""
    if not result:
        return None

    if result.get("competition_index") is not None:
        competition = result["competition_index"] / 100
    else:
        competition = _COMPETITION_LABELS.get(result.get("competition") or "", 0.0)

    trend = _trend(result.get("monthly_searches"))
    return {
        "keyword": result.get("keyword"),
        "volume": result.get("search_volume") or 0,
        "cpc": result.get("cpc") or result.get("high_top_of_page_bid") or 0,
        "cpc_low": result.get("low_top_of_page_bid") or 0,
        "cpc_high": result.get("high_top_of_page_bid") or 0,
        "competition": competition,
        "competition_label": result.get("competition") or "UNKNOWN",
        "difficulty": round(competition * 100),
        "intent": infer_intent(result.get("keyword") or ""),
        "trend": trend if len(trend) >= 2 else None,
    }


def normalize_traffic_result(result: dict[str, Any] | None) -> dict[str, Any] | None:
    """Normalize an ad traffic projection item."""
    if not result:
        return None
    return {
        "keyword": result.get("keyword"),
        "impressions": result.get("impressions") or 0,
        "clicks": result.get("clicks") or 0,
        "ctr": result.get("ctr") or 0,
        "average_cpc": result.get("average_cpc") or 0,
        "cost": result.get("cost") or 0,
    }


def normalize_labs_keyword(keyword_data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Normalize a Labs keyword_data block (suggestion, related, ranked, intersection)."""
    if not keyword_data or not keyword_data.get("keyword"):
        return None
    info = keyword_data.get("keyword_info") or {}
    props = keyword_data.get("keyword_properties") or {}
    intent_info = keyword_data.get("search_intent_info") or {}
    return {
        "keyword": keyword_data.get("keyword"),
        "volume": info.get("search_volume") or 0,
        "cpc": info.get("cpc") or 0,
        "cpc_low": info.get("low_top_of_page_bid") or 0,
        "cpc_high": info.get("high_top_of_page_bid") or 0,
        "competition": info.get("competition") or 0,
        "competition_label": info.get("competition_level") or "UNKNOWN",
        "difficulty": props.get("keyword_difficulty") or 0,
        "intent": intent_info.get("main_intent") or "commercial",
        "trend": _trend(info.get("monthly_searches")),
    }


def normalize_ranked_item(item: dict[str, Any]) -> dict[str, Any] | None:
    """Normalize a ranked_keywords item, adding the domain's SERP position."""
    normalized = normalize_labs_keyword(item.get("keyword_data"))
    if normalized is None:
        return None
    serp_item = (item.get("ranked_serp_element") or {}).get("serp_item") or {}
    normalized.update({
        "rank_group": serp_item.get("rank_group") or 0,
        "rank_absolute": serp_item.get("rank_absolute") or 0,
        "url": serp_item.get("url") or "",
        "title": serp_item.get("title") or "",
        "etv": serp_item.get("etv") or 0,
        "type": serp_item.get("type") or "organic",
    })
    return normalized


def normalize_intersection_item(item: dict[str, Any]) -> dict[str, Any] | None:
    """Normalize a domain_intersection item with both domains' positions."""
    normalized = normalize_labs_keyword(item.get("keyword_data"))
    if normalized is None:
        return None
    first = item.get("first_domain_serp_element") or {}
    second = item.get("second_domain_serp_element") or {}
    normalized.update({
        "domain1_rank": first.get("rank_group") or 0,
        "domain1_url": first.get("url") or "",
        "domain1_etv": first.get("etv") or 0,
        "domain2_rank": second.get("rank_group") or 0,
        "domain2_url": second.get("url") or "",
        "domain2_etv": second.get("etv") or 0,
    })
    return normalized


class KeywordDataProvider(Protocol):
    """Keyword metrics source used by the tool layer."""

    async def keywords_for_keywords(
        self, seeds: list[str], country_code: str
    ) -> list[dict[str, Any]]: ...

    async def keyword_suggestions(
        self, keyword: str, country_code: str, limit: int = 500
    ) -> list[dict[str, Any]]: ...

    async def related_keywords(
        self, keyword: str, country_code: str, depth: int = 2, limit: int = 500
    ) -> list[dict[str, Any]]: ...

    async def search_volume(
        self, keywords: list[str], country_code: str
    ) -> list[dict[str, Any]]: ...

    async def ranked_keywords(
        self, target: str, country_code: str, limit: int = 1000
    ) -> list[dict[str, Any]]: ...

    async def keywords_for_site(
        self, target: str, country_code: str
    ) -> list[dict[str, Any]]: ...

    async def domain_intersection(
        self,
        target1: str,
        target2: str,
        country_code: str,
        intersections: bool = True,
        limit: int = 1000,
    ) -> list[dict[str, Any]]: ...

    async def ad_traffic_by_keywords(
        self, keywords: list[str], country_code: str, bid: float
    ) -> list[dict[str, Any]]: ...


class DataForSEOClient:
    """Client for DataForSEO API.

    Provides methods for:
    - Google Ads keyword expansion, search volume and site keywords
    - Ad traffic projections at a bid
    - Labs keyword suggestions and related keywords
    - Labs competitor ranked keywords and domain intersections
    """

    BASE_URL = "https://api.dataforseo.com/v3"

    def __init__(
        self,
        login: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.login = login or settings.dataforseo_login
        self.password = password or settings.dataforseo_password
        self.timeout = timeout or settings.dataforseo_timeout_seconds
        self._client: httpx.AsyncClient | None = None

        if not self.login or not self.password:
            raise APIKeyMissingError("DataForSEO")

    @property
    def _auth_header(self) -> str:
        """Generate Basic Auth header."""
        credentials = f"{self.login}:{self.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return f"Basic {encoded}"

    async def __aenter__(self) -> "DataForSEOClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "Authorization": self._auth_header,
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    async def _make_request(
        self,
        endpoint: str,
        data: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """POST a single task and return its result list."""
        logger.info("DataForSEO API request", extra={"endpoint": endpoint})
        url = f"{self.BASE_URL}/{endpoint}"

        try:
            response = await self.client.post(url, json=data)

            if response.status_code == 429:
                logger.warning("DataForSEO rate limit hit", extra={"endpoint": endpoint})
                raise RateLimitExceededError("DataForSEO")

            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.warning("DataForSEO HTTP error", extra={"endpoint": endpoint, "error": str(e)})
            raise ExternalAPIError("DataForSEO", str(e)) from e
        except ValueError as e:
            logger.warning("DataForSEO returned a non-JSON body", extra={"endpoint": endpoint})
            raise ExternalAPIError("DataForSEO", "Response body is not JSON") from e

        if not isinstance(result, dict):
            raise ExternalAPIError("DataForSEO", "Response body is not a JSON object")

        if result.get("status_code") != 20000:
            logger.warning(
                "DataForSEO API error",
                extra={"endpoint": endpoint, "status": result.get("status_message")},
            )
            raise ExternalAPIError("DataForSEO", result.get("status_message", "Unknown error"))

        tasks = result.get("tasks") or []
        task = tasks[0] if isinstance(tasks, list) and tasks else None
        if not isinstance(task, dict) or task.get("status_code") != 20000:
            message = (task.get("status_message") if isinstance(task, dict) else None) or "Unknown error"
            raise ExternalAPIError("DataForSEO", f"Task failed: {message}")

        results = task.get("result") or []
        if not isinstance(results, list):
            raise ExternalAPIError("DataForSEO", "Task result is not a list")
        return results

    @staticmethod
    def _labs_items(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not results:
            return []
        return (results[0] or {}).get("items") or []

    # ========== Google Ads ==========

    async def search_volume(
        self,
        keywords: list[str],
        country_code: str,
    ) -> list[dict[str, Any]]:
        """Get Google Ads volume, CPC and competition for up to 1000 keywords."""
        location = get_location(country_code)
        if not keywords:
            return []

        logger.info("Fetching search volume", extra={"keyword_count": len(keywords), "country": country_code})
        data = [
            {
                "keywords": keywords[:1000],
                "location_code": location.code,
                "language_code": location.language,
                "search_partners": False,
                "sort_by": "search_volume",
            }
        ]
        results = await self._make_request("keywords_data/google_ads/search_volume/live", data)
        return [kw for kw in map(normalize_keyword_result, results) if kw]

    async def keywords_for_keywords(
        self,
        seeds: list[str],
        country_code: str,
    ) -> list[dict[str, Any]]:
        """Expand up to 20 seed keywords via Google Ads Keywords-for-Keywords."""
        location = get_location(country_code)
        if not seeds:
            return []

        logger.info("Expanding seed keywords", extra={"seeds": len(seeds), "country": country_code})
        data = [
            {
                "keywords": seeds[:20],
                "location_code": location.code,
                "language_code": location.language,
                "search_partners": False,
                "sort_by": "search_volume",
            }
        ]
        results = await self._make_request("keywords_data/google_ads/keywords_for_keywords/live", data)
        return [kw for kw in map(normalize_keyword_result, results) if kw]

    async def keywords_for_site(
        self,
        target: str,
        country_code: str,
    ) -> list[dict[str, Any]]:
        """Get the keywords Google Ads associates with a domain (its paid footprint)."""
        location = get_location(country_code)
        logger.info("Fetching site keywords", extra={"target": target, "country": country_code})
        data = [
            {
                "target": target,
                "target_type": "site",
                "location_code": location.code,
                "language_code": location.language,
                "sort_by": "search_volume",
            }
        ]
        results = await self._make_request("keywords_data/google_ads/keywords_for_site/live", data)
        return [kw for kw in map(normalize_keyword_result, results) if kw]

    async def ad_traffic_by_keywords(
        self,
        keywords: list[str],
        country_code: str,
        bid: float,
        match: str = "exact",
        date_interval: str = "next_month",
    ) -> list[dict[str, Any]]:
        """Project impressions, clicks and cost for keywords at a max CPC bid."""
        location = get_location(country_code)
        if not bid:
            raise ExternalAPIError("DataForSEO", "bid is required for ad traffic projections")
        if not keywords:
            return []

        logger.info(
            "Fetching ad traffic projection",
            extra={"keyword_count": len(keywords), "country": country_code, "bid": bid},
        )
        data = [
            {
                "keywords": keywords[:1000],
                "location_code": location.code,
                "language_code": location.language,
                "bid": bid,
                "match": match,
                "date_interval": date_interval,
            }
        ]
        results = await self._make_request("keywords_data/google_ads/ad_traffic_by_keywords/live", data)
        return [row for row in map(normalize_traffic_result, results) if row]

    # ========== DataForSEO Labs ==========

    async def keyword_suggestions(
        self,
        keyword: str,
        country_code: str,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        """Get SERP-derived long-tail suggestions containing the seed phrase."""
        location = get_location(country_code)
        logger.info("Fetching keyword suggestions", extra={"seed": keyword, "country": country_code, "limit": limit})
        data = [
            {
                "keyword": keyword,
                "location_code": location.code,
                "language_code": location.language,
                "include_serp_info": True,
                "limit": limit,
                "filters": [["keyword_info.search_volume", ">", 10]],
                "order_by": ["keyword_info.search_volume,desc"],
            }
        ]
        results = await self._make_request("dataforseo_labs/google/keyword_suggestions/live", data)
        # Suggestion items carry keyword_info at the top level
        return [kw for kw in map(normalize_labs_keyword, self._labs_items(results)) if kw]

    async def related_keywords(
        self,
        keyword: str,
        country_code: str,
        depth: int = 2,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        """Get "searches related to" keywords around a seed."""
        location = get_location(country_code)
        logger.info("Fetching related keywords", extra={"seed": keyword, "country": country_code, "depth": depth})
        data = [
            {
                "keyword": keyword,
                "location_code": location.code,
                "language_code": location.language,
                "depth": depth,
                "include_serp_info": True,
                "limit": limit,
                "order_by": ["keyword_data.keyword_info.search_volume,desc"],
            }
        ]
        results = await self._make_request("dataforseo_labs/google/related_keywords/live", data)
        items = self._labs_items(results)
        return [kw for kw in (normalize_labs_keyword(item.get("keyword_data")) for item in items) if kw]

    async def ranked_keywords(
        self,
        target: str,
        country_code: str,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """Get the keywords a domain ranks for organically."""
        location = get_location(country_code)
        logger.info("Fetching ranked keywords", extra={"target": target, "country": country_code})
        data = [
            {
                "target": target,
                "location_code": location.code,
                "language_code": location.language,
                "item_types": ["organic"],
                "limit": limit,
                "filters": [["keyword_data.keyword_info.search_volume", ">", 10]],
                "order_by": ["keyword_data.keyword_info.search_volume,desc"],
            }
        ]
        results = await self._make_request("dataforseo_labs/google/ranked_keywords/live", data)
        return [kw for kw in map(normalize_ranked_item, self._labs_items(results)) if kw]

    async def domain_intersection(
        self,
        target1: str,
        target2: str,
        country_code: str,
        intersections: bool = True,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """Compare two domains' organic keywords.

        Args:
            target1: First domain
            target2: Second domain
            country_code: Two-letter country code
            intersections: True for shared keywords, False for keywords unique to target1
            limit: Maximum keywords to return

        Returns:
            Keywords with both domains' rank, URL and estimated traffic value
        """
        location = get_location(country_code)
        logger.info(
            "Fetching domain intersection",
            extra={"target1": target1, "target2": target2, "intersections": intersections},
        )
        data = [
            {
                "target1": target1,
                "target2": target2,
                "location_code": location.code,
                "language_code": location.language,
                "intersections": intersections,
                "item_types": ["organic"],
                "limit": limit,
                "order_by": ["keyword_data.keyword_info.search_volume,desc"],
            }
        ]
        results = await self._make_request("dataforseo_labs/google/domain_intersection/live", data)
        return [kw for kw in map(normalize_intersection_item, self._labs_items(results)) if kw]
