from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # database & redis
    # Plain strings so sqlite:// and redis:// URLs are always accepted
    DATABASE_URL: str
    REDIS_URL: str

    # external APIs
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    TAVILY_API_KEY: str | None = None  # Enables the hosted extraction tier
    TAVILY_BASE_URL: str = "https://api.tavily.com"

    # auth / security
    API_AUTH_KEY: str | None = None
    CRON_SECRET: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # llm
    LLM_MODEL: str = "gpt-5-mini"
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    LLM_MAX_OUTPUT_TOKENS: int = 4000
    LLM_PRICEBOOK_JSON: str | None = None

    # extraction
    SCRAPER_MIN_WORD_COUNT: int = 80
    SCRAPER_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    SCRAPER_FORUM_USER_AGENT: str = "Mozilla/5.0 (compatible; SignalBot/1.0)"
    SCRAPER_REQUEST_TIMEOUT_SECONDS: int = 30
    SCRAPER_FEED_TIMEOUT_SECONDS: int = 15
    SCRAPER_NAVIGATION_TIMEOUT_MS: int = 60000
    BROWSER_HEADLESS: bool = True

    # scheduler
    SCRAPE_LOCK_MINUTES: int = 10
    SCRAPE_MAX_PROJECTS_PER_RUN: int = 10
    SCRAPE_MAX_SOURCES_PER_PROJECT: int = 20
    SCRAPE_CONCURRENCY: int = 5
    SCRAPE_DELAY_BETWEEN_SOURCES_SECONDS: float = 2.0
    SCRAPE_DELAY_BETWEEN_PROJECTS_SECONDS: float = 3.0
    SCRAPE_LOG_STALE_MINUTES: int = 30

    # analysis
    DETECTION_HOURS_BACK: int = 24
    MOMENTUM_HOURS_BACK: int = 48
    MOMENTUM_MIN_SIGNAL_AGE_HOURS: int = 24
    ANALYSIS_MAX_INGESTIONS: int = 100
    SIGNAL_HEADLINE_MAX_LENGTH: int = 100

    # data retention (in days)
    INGESTION_RETENTION_DAYS: int = 14
    SCRAPE_LOG_RETENTION_DAYS: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
