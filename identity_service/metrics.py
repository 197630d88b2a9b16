"""Prometheus collectors exposed on ``/metrics``."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "identity_login_attempts_total",
    "Login attempts by outcome.",
    ["outcome"],
)

TOKENS_ISSUED = Counter(
    "identity_secret_tokens_issued_total",
    "Secret tokens issued by kind.",
    ["kind"],
)
