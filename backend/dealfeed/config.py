"""Application configuration via Pydantic Settings."""

from typing import Dict, List
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SHEET_NAMES = (
    "BG Unique,BG Unique HUN,BG ALL Coupons,"
    "Geekbuying,Geekbuying Unique,"
    "AliExpress,AliExpress Choice"
)


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Google Sheets (curated coupon spreadsheet)
    SPREADSHEET_ID: str = ""
    GOOGLE_APPLICATION_CREDENTIALS_JSON: str = ""
    GOOGLE_SHEETS_API_KEY: str = ""
    SHEET_NAMES: str = DEFAULT_SHEET_NAMES
    SHEETS_CACHE_TTL_SECONDS: int = 300

    # Banggood affiliate API
    BANGGOOD_API_KEY: str = ""
    BANGGOOD_API_SECRET: str = ""
    BANGGOOD_TOKEN_MARGIN_SECONDS: int = 600
    BANGGOOD_MAX_PAGES: int = 5

    # AliExpress affiliate API
    ALIEXPRESS_APP_KEY: str = ""
    ALIEXPRESS_APP_SECRET: str = ""
    ALIEXPRESS_TRACKING_ID: str = ""
    # Primary gateway first, alternates after it
    ALIEXPRESS_API_URLS: str = "https://api-sg.aliexpress.com/sync,https://api.aliexpress.com/sync"
    ALIEXPRESS_TARGET_CURRENCY: str = "USD"
    ALIEXPRESS_TARGET_LANGUAGE: str = "EN"

    # Feed HTTP caching
    FEED_MAX_AGE_SECONDS: int = 180
    COUPONS_MAX_AGE_SECONDS: int = 600
    STALE_WHILE_REVALIDATE_SECONDS: int = 60
    FALLBACK_MAX_AGE_SECONDS: int = 60
    COUPON_SCORE_BONUS: float = 2.0
    # Fallback snapshots kept per feed (distinct queries)
    SNAPSHOT_MAX_PER_FEED: int = 200

    # Outbound redirects
    # JSON object of host suffix -> "param=value", e.g. {"banggood.com": "p=ABC123"}
    AFFILIATE_PARAMS: Dict[str, str] = {}
    UTM_SOURCE: str = "dealfeed"
    UTM_MEDIUM: str = "referral"
    UTM_CAMPAIGN: str = "deals"
    REDIRECT_MODE: str = "html"  # 'html' or '302'

    # Snapshot warmer
    WARMER_ENABLED: bool = True
    WARMER_INTERVAL_MINUTES: int = 10

    # HTTP client
    HTTP_TIMEOUT_SECONDS: float = 12.0

    # Frontend
    FRONTEND_URL: str = "http://localhost:5173"

    @model_validator(mode="after")
    def normalize_redirect_mode(self) -> "Settings":
        """Unknown redirect modes fall back to the HTML page."""
        if self.REDIRECT_MODE not in ("html", "302"):
            self.REDIRECT_MODE = "html"
        return self

    def get_sheet_names(self) -> List[str]:
        """Parse SHEET_NAMES into a list of tab titles."""
        return [n.strip() for n in self.SHEET_NAMES.split(",") if n.strip()]

    def get_aliexpress_urls(self) -> List[str]:
        """Parse ALIEXPRESS_API_URLS into an ordered list of gateway URLs."""
        return [u.strip() for u in self.ALIEXPRESS_API_URLS.split(",") if u.strip()]


settings = Settings()
