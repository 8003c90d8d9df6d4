"""Monitoring configuration for the scheduling core."""
from prometheus_client import Counter, Histogram, start_http_server

# Review metrics
reviews_total = Counter(
    "wordsrs_reviews_total",
    "Total number of card reviews scheduled",
    ["rating"],
)

rate_limited_total = Counter(
    "wordsrs_rate_limited_total",
    "Total number of requests rejected by the debounce guard",
    ["operation"],
)

# Override metrics
override_operations = Counter(
    "wordsrs_override_operations_total",
    "Total number of explicit override operations applied",
    ["operation"],
)

# Propagation metrics
kana_syncs = Counter(
    "wordsrs_kana_syncs_total",
    "Total number of kana reading cards created or updated by propagation",
    ["mode"],
)

kana_sync_failures = Counter(
    "wordsrs_kana_sync_failures_total",
    "Total number of kana propagation failures isolated from the primary operation",
)

# Recompute metrics
recomputed_cards = Counter(
    "wordsrs_recomputed_cards_total",
    "Total number of cards replayed by batch recomputation",
)

recompute_failures = Counter(
    "wordsrs_recompute_failures_total",
    "Total number of cards skipped because their history could not be replayed",
)

recompute_page_duration = Histogram(
    "wordsrs_recompute_page_duration_seconds",
    "Duration of a single recomputation page in seconds",
    buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
