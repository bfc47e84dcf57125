"""
Web search engine sources
"""

import re
from typing import Any, Dict, List, Optional

import httpx
import structlog

from gymcrawl.crawling.discovery.rate_limiter import RateLimiter
from gymcrawl.crawling.extraction.retry_handler import RetryHandler
from gymcrawl.models import Observation, ObservationType
from .base import HttpSourceAdapter
from .price_extractor import PriceExtractor
from .text_extractor import (
    determine_service_type,
    extract_facilities,
    extract_feature_flags,
    extract_hours,
    extract_links,
    extract_phone,
    extract_rating,
    extract_review_count,
    extract_social_links,
    html_to_text,
)

logger = structlog.get_logger(__name__)

REGION_PATTERNS = [
    re.compile(r"서울특별시\s+(\w+구)"),
    re.compile(r"서울\s+(\w+구)"),
    re.compile(r"(\w+구)(?!\w)"),
    re.compile(r"(\w+시)(?!\w)"),
    re.compile(r"(\w+동)(?!\w)"),
]

# Contribution of each extracted signal to the extraction score
EXTRACTION_WEIGHTS = {
    "phone": 0.3,
    "hours": 0.2,
    "price": 0.2,
    "rating": 0.1,
    "facilities": 0.1,
    "additional": 0.1,
}


def extract_region(address: Optional[str]) -> Optional[str]:
    """District (구) or city (시) from a Korean address"""
    if not address:
        return None
    for pattern in REGION_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(1)
    return None


def build_queries(name: str, address: Optional[str] = None) -> List[str]:
    queries = []
    region = extract_region(address)
    if region:
        queries.append(f"{name} {region} 헬스장")
    queries.append(f"{name} 헬스장")
    queries.append(f"{name} 피트니스")
    if re.search(r"짐|gym", name, re.IGNORECASE):
        queries.append(re.sub(r"짐|gym", "헬스장", name, flags=re.IGNORECASE))
    return list(dict.fromkeys(q.strip() for q in queries if q.strip()))


class SearchEngineAdapter(HttpSourceAdapter):
    """Public search results page scraped for facility details"""

    search_url: str = ""
    query_param: str = "query"
    extra_params: Dict[str, Any] = {}

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        retry_handler: Optional[RetryHandler] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        min_extraction_score: float = 0.3,
        max_queries: int = 2
    ):
        super().__init__(rate_limiter, retry_handler, client, timeout_seconds)
        self.min_extraction_score = min_extraction_score
        self.max_queries = max_queries
        self.price_extractor = PriceExtractor()

    def build_params(self, query: str) -> Dict[str, Any]:
        return {**self.extra_params, self.query_param: query}

    async def search(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        """
        Try a few queries until one page yields enough extracted detail

        BlockedError and exhausted retries propagate to the caller.
        """
        for query in build_queries(name, address)[:self.max_queries]:
            html = await self._get(self.search_url, self.build_params(query))
            observation = self.extract(html, name, address)
            if observation is not None:
                logger.info("Search result extracted",
                            source=self.name,
                            target=name,
                            query=query,
                            confidence=observation.confidence)
                return observation

        logger.debug("No usable search result", source=self.name, target=name)
        return None

    def extract(self, html: str, name: str, address: Optional[str] = None) -> Optional[Observation]:
        """Turn a result page into an observation, None when too little was found"""
        text = html_to_text(html)
        links = extract_links(html)

        phone = extract_phone(text)
        open_hour, close_hour = extract_hours(text)
        prices = self.price_extractor.extract(text)
        rating = extract_rating(text)
        review_count = extract_review_count(text)
        facilities = extract_facilities(text)
        social = extract_social_links(text, links)

        score = self.extraction_score(
            phone=phone,
            open_hour=open_hour,
            price=prices.price,
            rating=rating,
            facilities=facilities,
            additional=bool(social.get("website") or review_count)
        )
        if score < self.min_extraction_score:
            return None

        return Observation(
            name=name,
            address=address or "",
            phone=phone,
            rating=rating,
            review_count=review_count,
            open_hour=open_hour,
            close_hour=close_hour,
            price=prices.price,
            membership_price=prices.membership_price,
            pt_price=prices.pt_price,
            gx_price=prices.gx_price,
            day_pass_price=prices.day_pass_price,
            discount_info=prices.discount_info,
            minimum_price=prices.minimum_price,
            website=social.get("website"),
            instagram=social.get("instagram"),
            facebook=social.get("facebook"),
            facilities=facilities,
            service_type=determine_service_type(name, " ".join(facilities)),
            source=self.name,
            confidence=min(self.base_confidence, score),
            type=ObservationType.PRIVATE,
            **extract_feature_flags(text)
        )

    @staticmethod
    def extraction_score(
        phone: Optional[str] = None,
        open_hour: Optional[str] = None,
        price: Optional[str] = None,
        rating: Optional[float] = None,
        facilities: Optional[List[str]] = None,
        additional: bool = False
    ) -> float:
        score = 0.0
        if phone:
            score += EXTRACTION_WEIGHTS["phone"]
        if open_hour:
            score += EXTRACTION_WEIGHTS["hours"]
        if price:
            score += EXTRACTION_WEIGHTS["price"]
        if rating is not None:
            score += EXTRACTION_WEIGHTS["rating"]
        if facilities:
            score += EXTRACTION_WEIGHTS["facilities"]
        if additional:
            score += EXTRACTION_WEIGHTS["additional"]
        return round(min(score, 1.0), 4)


class NaverSearchAdapter(SearchEngineAdapter):
    name = "naver"
    priority = 2
    base_confidence = 0.8
    search_url = "https://search.naver.com/search.naver"
    extra_params = {"where": "nexearch"}


class GoogleSearchAdapter(SearchEngineAdapter):
    name = "google"
    priority = 3
    base_confidence = 0.75
    search_url = "https://www.google.com/search"
    query_param = "q"
    extra_params = {"hl": "ko"}


class DaumSearchAdapter(SearchEngineAdapter):
    name = "daum"
    priority = 4
    base_confidence = 0.7
    search_url = "https://search.daum.net/search"
    query_param = "q"
    extra_params = {"w": "tot"}


class NaverBlogSearchAdapter(SearchEngineAdapter):
    name = "naver_blog"
    priority = 5
    base_confidence = 0.6
    search_url = "https://search.naver.com/search.naver"
    extra_params = {"where": "blog"}


class NaverCafeSearchAdapter(SearchEngineAdapter):
    name = "naver_cafe"
    priority = 6
    base_confidence = 0.55
    search_url = "https://search.naver.com/search.naver"
    extra_params = {"where": "cafe"}


SEARCH_ENGINE_ADAPTERS = [
    NaverSearchAdapter,
    GoogleSearchAdapter,
    DaumSearchAdapter,
    NaverBlogSearchAdapter,
    NaverCafeSearchAdapter,
]
