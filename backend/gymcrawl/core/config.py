"""
Crawler configuration
"""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gymcrawl.core.exceptions import ConfigurationException


class Settings(BaseSettings):
    """Environment settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    # Public Data API
    SEOUL_OPENAPI_KEY: str = ""
    PUBLIC_API_BASE_URL: str = "http://openapi.seoul.go.kr:8088"
    PUBLIC_API_SERVICE: str = "LOCALDATA_104201"
    PUBLIC_API_PAGE_SIZE: int = 1000
    PUBLIC_API_MAX_ROWS: int = 10000
    PUBLIC_API_MAX_RESPONSE_BYTES: int = 10 * 1024 * 1024  # 10 MB

    # Request Settings (seconds)
    REQUEST_TIMEOUT: float = 30.0
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 30.0
    BLOCK_COOLDOWN_SECONDS: float = 30.0
    ADAPTER_DELAY_MIN_SECONDS: float = 1.0
    ADAPTER_DELAY_MAX_SECONDS: float = 3.0

    # Batch Processing
    BATCH_SIZE: int = 5
    MAX_CONCURRENT_REQUESTS: int = 1
    BATCH_DELAY_SECONDS: float = 10.0
    LOW_SUCCESS_DELAY_SECONDS: float = 20.0

    # Search / Matching
    HIGH_CONFIDENCE_THRESHOLD: float = 0.7
    DUPLICATE_THRESHOLD: float = 0.8
    MIN_EXTRACTION_SCORE: float = 0.3
    ENABLE_PARALLEL_SEARCH: bool = False
    CACHE_MAX_ENTRIES: int = 500

    # Phase deadlines (seconds)
    BULK_PHASE_TIMEOUT_SECONDS: float = 300.0
    SINGLE_LOOKUP_TIMEOUT_SECONDS: float = 120.0

    # Files
    SOURCES_CONFIG_PATH: str = "./config/sources.yaml"
    DATA_FILE_PATH: str = "./data/gyms_raw.json"


# Create global settings instance
settings = Settings()


class AdapterSettings(BaseModel):
    """Per-adapter crawl settings"""
    name: str
    priority: int = 100
    enabled: bool = True
    timeout_seconds: float = 30.0
    delay_seconds: float = 2.0
    base_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class CrawlConfig(BaseModel):
    """Configuration for a single crawl run"""
    adapters: List[AdapterSettings] = Field(default_factory=list)
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    block_cooldown_seconds: float = 30.0
    adapter_delay_min_seconds: float = 1.0
    adapter_delay_max_seconds: float = 3.0
    batch_size: int = Field(default=5, ge=1)
    max_concurrent: int = Field(default=1, ge=1)
    batch_delay_seconds: float = 10.0
    low_success_delay_seconds: Optional[float] = None  # Replaces batch_delay_seconds after a weak batch
    high_confidence_threshold: float = 0.7
    duplicate_threshold: float = 0.8
    min_extraction_score: float = 0.3
    enable_parallel: bool = False
    cache_max_entries: int = 500
    bulk_phase_timeout_seconds: float = 300.0
    single_lookup_timeout_seconds: float = 120.0
    include_public_api: bool = True
    persist: bool = True

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "CrawlConfig":
        """Build run configuration from environment settings"""
        source = source or settings
        return cls(
            adapters=load_adapter_settings(source.SOURCES_CONFIG_PATH),
            max_retries=source.MAX_RETRIES,
            retry_base_delay=source.RETRY_BASE_DELAY,
            retry_max_delay=source.RETRY_MAX_DELAY,
            block_cooldown_seconds=source.BLOCK_COOLDOWN_SECONDS,
            adapter_delay_min_seconds=source.ADAPTER_DELAY_MIN_SECONDS,
            adapter_delay_max_seconds=source.ADAPTER_DELAY_MAX_SECONDS,
            batch_size=source.BATCH_SIZE,
            max_concurrent=source.MAX_CONCURRENT_REQUESTS,
            batch_delay_seconds=source.BATCH_DELAY_SECONDS,
            low_success_delay_seconds=source.LOW_SUCCESS_DELAY_SECONDS,
            high_confidence_threshold=source.HIGH_CONFIDENCE_THRESHOLD,
            duplicate_threshold=source.DUPLICATE_THRESHOLD,
            min_extraction_score=source.MIN_EXTRACTION_SCORE,
            enable_parallel=source.ENABLE_PARALLEL_SEARCH,
            cache_max_entries=source.CACHE_MAX_ENTRIES,
            bulk_phase_timeout_seconds=source.BULK_PHASE_TIMEOUT_SECONDS,
            single_lookup_timeout_seconds=source.SINGLE_LOOKUP_TIMEOUT_SECONDS,
        )

    def adapter_settings(self, name: str) -> Optional[AdapterSettings]:
        for adapter in self.adapters:
            if adapter.name == name:
                return adapter
        return None


def load_adapter_settings(path: Optional[str]) -> List[AdapterSettings]:
    """
    Load adapter overrides from a YAML file

    Args:
        path: Path to a YAML document with a top-level ``sources`` list

    Returns:
        List of adapter settings, empty when the file does not exist

    Raises:
        ConfigurationException: If the document is not shaped as expected
    """
    if not path:
        return []

    config_path = get_absolute_path(path)
    if not config_path.exists():
        return []

    with open(config_path, "r", encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}

    entries = document.get("sources", []) if isinstance(document, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationException(
            "Sources config must contain a 'sources' list",
            error_code="INVALID_SOURCES_CONFIG",
            details={"path": str(config_path)}
        )

    return [AdapterSettings(**entry) for entry in entries]


# Helper function to get absolute path
def get_absolute_path(relative_path: str) -> Path:
    """Convert relative path to absolute path"""
    path = Path(relative_path)
    if path.is_absolute():
        return path
    return Path.cwd() / path
