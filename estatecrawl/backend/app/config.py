from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    CRAWL_DB_URL: str = "sqlite+aiosqlite:///./estatecrawl.db"

    # --- HTTP fetcher ---
    HTTP_TIMEOUT_S: float = 30.0
    HTTP_USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36"
    )
    HTTP_ACCEPT_LANGUAGE: str = "en-GB,en-US;q=0.9,en;q=0.8"
    HTTP_VERIFY_SSL: bool = True

    # Optional: if you have a custom CA bundle path (rare on corp setups)
    HTTP_CA_BUNDLE: str | None = None

    # --- PrimeLocation proxy fallback (blocked source) ---
    PRIMELOCATION_PROXY_URL: str | None = None
    PROXY_AUTH_TOKEN: str | None = None
    PRIMELOCATION_FORCE_PROXY: bool = False

    # --- Scrape engine defaults ---
    SCRAPE_MAX_PAGES: int = 1
    SCRAPE_MAX_URLS: int = 10
    SCRAPE_REQUEST_TIMEOUT_MS: int = 12000
    SCRAPE_DISCOVERY_TIMEOUT_MS: int = 5000
    SCRAPE_CONCURRENCY: int = 5
    SCRAPE_MAX_ATTEMPTS: int = 3  # initial + 2 retries
    SCRAPE_BACKOFF_STEP_MS: int = 1000  # attempt * step
    SCRAPE_RECENT_HOURS: int = 12  # stop-on-known window

    # --- Region fan-out ---
    REGION_CONCURRENCY: int = 5
    RUN_LOCK_TTL_S: int = 600
    REGION_FRESH_MINUTES_DEFAULT: int = 10
    # slower sites get a longer window
    REGION_FRESH_MINUTES: dict[str, int] = {"Zoopla": 15, "Properstar": 12}
    PACING_MAX_PAGES: int = 5
    PACING_HARD_MAX_PAGES: int = 10
    # jittered pause before each region starts
    REGION_JITTER_MS: int = 250

    # --- Discovery ---
    DISCOVERY_PAGE_CAP: int = 4


settings = Settings()
