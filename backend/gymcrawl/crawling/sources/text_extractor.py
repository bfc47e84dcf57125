"""
Pattern extraction over search result pages
"""

import re
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from gymcrawl.models import ServiceType

PHONE_PATTERNS = [
    re.compile(r"(\d{2,3}-\d{3,4}-\d{4})"),
    re.compile(r"(\d{2,3}\s\d{3,4}\s\d{4})"),
    re.compile(r"(?<!\d)(\d{10,11})(?!\d)"),
]

HOURS_RANGE_PATTERNS = [
    re.compile(r"(\d{1,2}:\d{2})\s*[-~]\s*(\d{1,2}:\d{2})"),
    re.compile(r"(\d{1,2}시)\s*[-~]\s*(\d{1,2}시)"),
]
OPEN_PATTERN = re.compile(r"오픈\s*(\d{1,2}:\d{2})")
CLOSE_PATTERN = re.compile(r"마감\s*(\d{1,2}:\d{2})")

RATING_PATTERNS = [
    re.compile(r"평점\s*(\d+(?:\.\d+)?)"),
    re.compile(r"별점\s*(\d+(?:\.\d+)?)"),
    re.compile(r"(\d+(?:\.\d+)?)\s*/\s*5(?!\d)"),
]

REVIEW_PATTERNS = [
    re.compile(r"리뷰\s*(\d[\d,]*)"),
    re.compile(r"후기\s*(\d[\d,]*)"),
    re.compile(r"(\d[\d,]*)\s*개\s*(?:리뷰|후기)"),
]

FACILITY_KEYWORDS = [
    "헬스장", "피트니스", "PT", "GX", "요가", "필라테스", "크로스핏",
    "웨이트", "유산소", "24시간", "샤워시설", "주차장", "락커룸",
    "운동복", "개인트레이너", "그룹레슨", "회원권", "일일권",
]

FEATURE_KEYWORDS: Dict[str, List[str]] = {
    "is_24_hours": ["24시간", "24시", "24h", "24 hours"],
    "has_parking": ["주차", "parking"],
    "has_shower": ["샤워", "shower"],
    "has_group_pt": ["그룹pt", "그룹 pt", "group pt"],
    "has_pt": ["pt", "개인트레이닝", "개인트레이너", "personal training"],
    "has_gx": ["gx", "그룹레슨", "그룹운동", "group exercise"],
}

# Checked in order; first hit wins
SERVICE_TYPE_KEYWORDS: List[Tuple[ServiceType, List[str]]] = [
    (ServiceType.CROSSFIT, ["크로스핏", "crossfit", "cross fit"]),
    (ServiceType.PT, ["pt", "개인트레이닝", "personal training"]),
    (ServiceType.GX, ["gx", "그룹", "group exercise"]),
    (ServiceType.YOGA, ["요가", "yoga"]),
    (ServiceType.PILATES, ["필라테스", "pilates"]),
]

LINK_PATTERNS = {
    "instagram": re.compile(r"https?://(?:www\.)?instagram\.com/[\w.\-/]+", re.IGNORECASE),
    "facebook": re.compile(r"https?://(?:www\.)?facebook\.com/[\w.\-/]+", re.IGNORECASE),
}

SEARCH_HOSTS = ("naver.com", "google.com", "daum.net", "kakao.com", "instagram.com", "facebook.com")


def html_to_text(html: str) -> str:
    """Visible page text without scripts and styles"""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    body = soup.body or soup
    return " ".join(body.get_text(separator=" ").split())


def extract_links(html: str) -> List[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    return [a["href"] for a in soup.find_all("a", href=True)]


def extract_phone(text: str) -> Optional[str]:
    if not text:
        return None
    for pattern in PHONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"\s+", "-", match.group(1))
    return None


def extract_hours(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Opening and closing hour, either may be None"""
    if not text:
        return None, None
    for pattern in HOURS_RANGE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1), match.group(2)

    open_match = OPEN_PATTERN.search(text)
    close_match = CLOSE_PATTERN.search(text)
    return (
        open_match.group(1) if open_match else None,
        close_match.group(1) if close_match else None,
    )


def extract_rating(text: str) -> Optional[float]:
    if not text:
        return None
    for pattern in RATING_PATTERNS:
        for match in pattern.finditer(text):
            rating = float(match.group(1))
            if 0.0 <= rating <= 5.0:
                return rating
    return None


def extract_review_count(text: str) -> Optional[int]:
    if not text:
        return None
    for pattern in REVIEW_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1).replace(",", ""))
    return None


def extract_facilities(text: str) -> List[str]:
    lowered = (text or "").lower()
    return [keyword for keyword in FACILITY_KEYWORDS if keyword.lower() in lowered]


def extract_feature_flags(text: str) -> Dict[str, bool]:
    """Flags that the text positively mentions; absent flags stay unknown"""
    lowered = (text or "").lower()
    flags: Dict[str, bool] = {}
    for flag, keywords in FEATURE_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            flags[flag] = True
    return flags


def determine_service_type(*texts: Optional[str]) -> ServiceType:
    combined = " ".join(t for t in texts if t).lower()
    for service_type, keywords in SERVICE_TYPE_KEYWORDS:
        if any(keyword in combined for keyword in keywords):
            return service_type
    return ServiceType.GYM


def extract_social_links(text: str, links: Optional[List[str]] = None) -> Dict[str, str]:
    """Instagram, Facebook and the first non-search-engine website"""
    found: Dict[str, str] = {}
    haystack = " ".join([text or ""] + list(links or []))
    for name, pattern in LINK_PATTERNS.items():
        match = pattern.search(haystack)
        if match:
            found[name] = match.group(0)

    for link in links or []:
        if link.startswith("http") and not any(host in link for host in SEARCH_HOSTS):
            found["website"] = link
            break
    return found
