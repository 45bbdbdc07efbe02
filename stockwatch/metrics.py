"""Prometheus metrics for stockwatch."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("stockwatch", "Stockwatch application info")
app_info.info({"version": "0.1.0", "name": "stockwatch"})

# Availability checks
stock_checks_total = Counter(
    "stock_checks_total",
    "Total number of item availability resolutions",
    ["path", "result"],
)

stock_check_duration_seconds = Histogram(
    "stock_check_duration_seconds",
    "Time spent resolving a single item",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Fallback orchestrator
source_attempts_total = Counter(
    "source_attempts_total",
    "Attempts made against upstream sources",
    ["source", "outcome"],
)

# Store extraction
store_names_found_total = Counter(
    "store_names_found_total",
    "Store names produced per extraction strategy",
    ["strategy"],
)

# Listing scans
listing_pages_total = Counter(
    "listing_pages_total",
    "Listing pages fetched",
    ["status"],
)

listing_items_total = Counter(
    "listing_items_total",
    "Listing items kept after filtering",
    ["category"],
)

category_scan_failures_total = Counter(
    "category_scan_failures_total",
    "Categories whose scan failed",
    ["category"],
)

# Notifications
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Webhook notifications sent",
    ["status"],
)
