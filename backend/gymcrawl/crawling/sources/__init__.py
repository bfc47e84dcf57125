"""
Facility data sources: public dataset and web search engines
"""

from .base import HttpSourceAdapter, SourceAdapter
from .price_extractor import PriceExtractor, PriceInfo
from .public_api import PublicApiAdapter
from .registry import SourceRegistry, build_default_registry
from .search_engines import (
    DaumSearchAdapter,
    GoogleSearchAdapter,
    NaverBlogSearchAdapter,
    NaverCafeSearchAdapter,
    NaverSearchAdapter,
    SEARCH_ENGINE_ADAPTERS,
    SearchEngineAdapter,
    build_queries,
    extract_region,
)

__all__ = [
    "HttpSourceAdapter",
    "SourceAdapter",
    "PriceExtractor",
    "PriceInfo",
    "PublicApiAdapter",
    "SourceRegistry",
    "build_default_registry",
    "DaumSearchAdapter",
    "GoogleSearchAdapter",
    "NaverBlogSearchAdapter",
    "NaverCafeSearchAdapter",
    "NaverSearchAdapter",
    "SEARCH_ENGINE_ADAPTERS",
    "SearchEngineAdapter",
    "build_queries",
    "extract_region",
]
