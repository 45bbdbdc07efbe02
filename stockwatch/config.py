"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Retailer
    base_url: str = "https://uk.webuy.com"
    search_url: str = "https://uk.webuy.com/search"
    currency_symbol: str = "£"
    error_page_marker: str = "oh crumbs!"

    # Structured API endpoints, tried in order. {id} and {id_lower} are substituted.
    api_endpoints: list[str] = [
        "https://api.webuy.com/api/v2/boxes/{id}",
        "https://wss2.cex.uk.webuy.io/v3/boxes/{id_lower}/detail",
    ]

    # Store-stock API guesses (GET first, then POST with the box id)
    store_stock_api_enabled: bool = True
    store_stock_api_paths: list[str] = [
        "https://wss2.cex.uk.webuy.io/v3/boxes/{id_lower}/stores",
        "https://api.webuy.com/api/v2/boxes/{id}/stores",
        "https://wss2.cex.uk.webuy.io/v3/stores/stock?boxId={id}",
    ]

    # HTTP
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
    )
    accept_language: str = "en-GB,en;q=0.9"
    request_timeout_seconds: float = 15.0

    # Retry / fallback
    api_attempts_per_source: int = 2
    retry_base_delay_seconds: float = 0.1
    store_api_attempts_per_source: int = 1

    # Availability checks
    max_concurrent_checks: int = 2
    store_probe_max_quantity: int = 20
    store_probe_max_stores: int = 20

    # Listing scans
    page_delay_seconds: float = 0.5
    category_delay_seconds: float = 1.0
    max_pages_per_category: int = 5
    disc_max_pages_per_category: int = 10
    disc_min_price: float = 20.0

    # Headless browser
    headless: bool = True
    navigation_timeout_ms: int = 30000
    selector_timeout_ms: int = 8000
    loading_timeout_ms: int = 5000
    blocked_resource_types: list[str] = ["stylesheet", "font"]

    # Notifications
    notify_webhook_url: str = ""

    # Catalog files (store groups, category lists)
    catalog_settings_path: str = "settings.json"
    catalog_stores_path: str = "stores.json"

    # App Settings
    log_level: str = "INFO"
    logs_dir: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
