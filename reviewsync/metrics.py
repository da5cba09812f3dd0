from prometheus_client import Counter, Histogram

GOOGLE_API_REQUESTS = Counter(
    "google_api_requests_total",
    "Google Business Profile API requests",
    ["method", "outcome"],
)

GOOGLE_API_RETRIES = Counter(
    "google_api_retries_total",
    "Google API retries by error code",
    ["code"],
)

GOOGLE_API_LATENCY = Histogram(
    "google_api_request_seconds",
    "Latency of a single Google API attempt",
    ["method"],
)

GOOGLE_REFRESH_SUCCESS = Counter(
    "google_refresh_success_total",
    "Google token refresh success",
)

GOOGLE_REFRESH_FAILED = Counter(
    "google_refresh_failed_total",
    "Google token refresh failed",
    ["reason"],
)

GOOGLE_REFRESH_DEDUPED = Counter(
    "google_refresh_deduped_total",
    "Token requests that joined an in-flight refresh",
)

OAUTH_START = Counter(
    "oauth_start_total",
    "OAuth flow starts",
    ["provider"],
)

OAUTH_CALLBACK = Counter(
    "oauth_callback_total",
    "OAuth callbacks by result",
    ["provider", "result"],
)

SYNC_RUNS = Counter(
    "review_sync_runs_total",
    "Review sync invocations by result",
    ["result"],
)

SYNC_RECORDS = Counter(
    "review_sync_records_total",
    "Synced review records by outcome",
    ["outcome"],
)

REPLY_GENERATIONS = Counter(
    "reply_generations_total",
    "AI reply generations by result",
    ["result"],
)

REPLY_RATE_LIMITED = Counter(
    "reply_rate_limited_total",
    "Generation requests denied by the rate limiter",
    ["reason"],
)

REPLY_PUBLISH = Counter(
    "reply_publish_total",
    "Reply publish attempts by outcome",
    ["outcome"],
)
