"""
Seoul public dataset source
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import structlog

from gymcrawl.core.exceptions import SourceRequestError
from gymcrawl.crawling.discovery.rate_limiter import RateLimiter
from gymcrawl.crawling.extraction.retry_handler import RetryHandler
from gymcrawl.crawling.standardization.similarity import SimilarityScorer
from gymcrawl.models import Observation, ObservationType
from .base import HttpSourceAdapter
from .text_extractor import determine_service_type

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = ["영업", "정상영업", "영업중", "운영중", "정상운영"]

GYM_KEYWORDS = [
    "헬스", "헬스장", "피트니스", "fitness", "gym", "짐",
    "크로스핏", "crossfit", "cross fit",
    "pt", "personal training", "개인트레이닝",
    "gx", "group exercise", "그룹운동",
    "요가", "yoga", "필라테스", "pilates",
    "웨이트", "weight", "근력", "muscle",
    "체육관", "운동", "exercise", "스포츠",
    "체육", "운동시설", "헬스클럽", "피트니스센터",
]

# Result codes returned inside the JSON envelope
NO_DATA_CODE = "INFO-200"
AUTH_ERROR_CODES = ("INFO-100", "ERROR-300")


def is_active_business(status: Optional[str]) -> bool:
    if not status:
        return False
    return any(active in status for active in ACTIVE_STATUSES)


def is_gym_related(*texts: Optional[str]) -> bool:
    combined = " ".join(t for t in texts if t).lower()
    return any(keyword in combined for keyword in GYM_KEYWORDS)


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class PublicApiAdapter(HttpSourceAdapter):
    """
    Keyed public dataset of registered sports facilities

    Rows are collected once per run with collect_all(); search() and
    lookup() answer from those rows without further requests.
    """

    name = "seoul_public_api"
    priority = 1
    base_confidence = 0.9

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "http://openapi.seoul.go.kr:8088",
        service: str = "LOCALDATA_104201",
        page_size: int = 1000,
        max_rows: int = 10000,
        max_response_bytes: int = 10 * 1024 * 1024,
        match_threshold: float = 0.8,
        rate_limiter: Optional[RateLimiter] = None,
        retry_handler: Optional[RetryHandler] = None,
        client: Optional[httpx.AsyncClient] = None,
        scorer: Optional[SimilarityScorer] = None,
        timeout_seconds: float = 30.0
    ):
        super().__init__(rate_limiter, retry_handler, client, timeout_seconds)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.page_size = page_size
        self.max_rows = max_rows
        self.max_response_bytes = max_response_bytes
        self.match_threshold = match_threshold
        self.scorer = scorer or SimilarityScorer()
        self.records: List[Observation] = []
        self._key_rejected = False

    def is_available(self) -> bool:
        return self.enabled and bool(self.api_key) and not self._key_rejected

    def has_data(self) -> bool:
        return bool(self.records)

    def _page_url(self, start: int, end: int) -> str:
        return f"{self.base_url}/{self.api_key}/json/{self.service}/{start}/{end}/"

    async def collect_all(self) -> List[Observation]:
        """
        Page through the dataset and keep active gym rows

        Returns:
            Observations for every active, gym-related row; empty when no
            API key is configured or the key is rejected
        """
        if not self.api_key:
            logger.warning("Public API key missing, skipping source", source=self.name)
            return []
        if not self.is_available():
            return []

        collected: List[Observation] = []
        fetched = 0
        start = 1

        while fetched < self.max_rows:
            end = min(start + self.page_size - 1, self.max_rows)
            payload = await self._fetch_page(start, end)
            if payload is None:
                break

            rows = payload.get("row") or []
            fetched += len(rows)
            collected.extend(self._process_rows(rows))

            total = payload.get("list_total_count")
            logger.info("Public API page fetched",
                        source=self.name,
                        start=start,
                        end=end,
                        rows=len(rows),
                        total=total)

            if len(rows) < end - start + 1:
                break
            if isinstance(total, int) and end >= total:
                break
            start = end + 1

        self.records = collected
        logger.info("Public API collection completed",
                    source=self.name,
                    fetched=fetched,
                    kept=len(collected))
        return collected

    async def _fetch_page(self, start: int, end: int) -> Optional[Dict[str, Any]]:
        body = await self._get(self._page_url(start, end), max_bytes=self.max_response_bytes)
        try:
            document = json.loads(body)
        except ValueError as e:
            raise SourceRequestError(
                f"{self.name} returned malformed JSON",
                status_code=200,
                details={"start": start, "end": end}
            ) from e
        if not isinstance(document, dict):
            raise SourceRequestError(
                f"{self.name} returned an unexpected document",
                status_code=200,
                details={"start": start, "end": end}
            )

        payload = document.get(self.service)
        result = (payload or document).get("RESULT") or {}
        code = result.get("CODE")

        if code in AUTH_ERROR_CODES:
            self._key_rejected = True
            logger.warning("Public API key rejected, skipping source",
                           source=self.name,
                           code=code,
                           message=result.get("MESSAGE"))
            return None
        if code == NO_DATA_CODE or payload is None:
            return None
        return payload

    def _process_rows(self, rows: List[Dict[str, Any]]) -> List[Observation]:
        observations = []
        for row in rows:
            name = (row.get("BPLCNM") or "").strip()
            address = (row.get("RDNWHLADDR") or row.get("SITEWHLADDR") or "").strip()
            if not name or not address:
                continue
            if not is_active_business(row.get("TRDSTATENM")):
                continue
            if not is_gym_related(row.get("UPTAENM"), row.get("DRMKCOBNM"), row.get("CULPHYEDCOBNM"), name):
                continue
            observations.append(self._to_observation(row, name, address))
        return observations

    def _to_observation(self, row: Dict[str, Any], name: str, address: str) -> Observation:
        category = row.get("DRMKCOBNM") or row.get("UPTAENM") or None
        return Observation(
            name=name,
            address=address,
            phone=(row.get("SITETEL") or "").strip() or None,
            latitude=_to_float(row.get("Y")),
            longitude=_to_float(row.get("X")),
            business_status=row.get("TRDSTATENM"),
            business_type=row.get("UPTAENM") or None,
            category=category,
            management_number=row.get("MGTNO") or None,
            approval_date=row.get("APVPERMYMD") or None,
            site_area=str(row["SITEAREA"]) if row.get("SITEAREA") not in (None, "") else None,
            postal_code=row.get("RDNPOSTNO") or row.get("SITEPOSTNO") or None,
            facilities=[category] if category else [],
            service_type=determine_service_type(name, row.get("DRMKCOBNM")),
            source=self.name,
            confidence=self.base_confidence,
            type=ObservationType.PUBLIC
        )

    def lookup(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        """Best collected row for a facility, None below the match threshold"""
        target = {"name": name, "address": address}
        best: Optional[Observation] = None
        best_score = 0.0
        for record in self.records:
            score = self.scorer.score(target, record)
            if score > self.match_threshold and score > best_score:
                best, best_score = record, score
        return best

    async def search(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        return self.lookup(name, address)
