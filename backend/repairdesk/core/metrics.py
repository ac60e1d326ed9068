"""Prometheus counters for the auth subsystem (exposed at /metrics)."""

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "repairdesk_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)
TOKEN_REFRESHES = Counter(
    "repairdesk_token_refreshes_total",
    "Refresh-token rotations by outcome",
    ["outcome"],
)
REFRESH_TOKEN_REUSE = Counter(
    "repairdesk_refresh_token_reuse_total",
    "Revoked refresh tokens presented again",
)
SWEPT_REFRESH_TOKENS = Counter(
    "repairdesk_swept_refresh_tokens_total",
    "Expired or revoked refresh tokens deleted by the cleanup sweeper",
)
