from prometheus_client import Counter

REMOTE_CALLS = Counter(
    "sushi_remote_calls_total",
    "Calls made to the ordering API, by HTTP method and classified outcome",
    ["method", "outcome"],
)

SERVED_FROM_CACHE = Counter(
    "sushi_served_from_cache_total",
    "Reads answered from the local mirror instead of the ordering API",
    ["resource"],
)

STORAGE_ERRORS = Counter(
    "sushi_storage_errors_total",
    "Local store operations that failed and were degraded to an empty result",
    ["operation"],
)

ORDERS_QUEUED = Counter(
    "sushi_orders_queued_total",
    "Orders persisted locally as pending upload",
)

ORDERS_SYNCED = Counter(
    "sushi_orders_synced_total",
    "Pending orders successfully uploaded to the ordering API",
)
