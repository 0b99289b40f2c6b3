from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
LLM_CALLS_TOTAL = Counter("llm_calls_total", "Total LLM generation calls", ["kind"])
LLM_FALLBACKS_TOTAL = Counter(
    "llm_fallbacks_total",
    "Generations served from the templated fallback",
    ["kind"],
)
CHANGE_FEED_SUBSCRIPTIONS = Gauge("change_feed_subscriptions", "Open change feed subscriptions")
ACTIVE_LOBBY_SOCKETS = Gauge("active_lobby_sockets", "Number of lobbies with connected websockets")
HOST_SEQUENCES_TOTAL = Counter("host_sequences_total", "Host sequences by outcome", ["kind", "status"])


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "LLM_CALLS_TOTAL",
    "LLM_FALLBACKS_TOTAL",
    "CHANGE_FEED_SUBSCRIPTIONS",
    "ACTIVE_LOBBY_SOCKETS",
    "HOST_SEQUENCES_TOTAL",
    "generate_latest",
]
