"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Access gate metrics
gate_decisions_total = Counter(
    "gate_decisions_total",
    "Access gate decisions on public endpoints",
    labelnames=["outcome"],  # admitted, invalid_key, key_not_active, blocked, quota_exceeded, endpoint_unavailable
)

bans_auto_cleared_total = Counter(
    "bans_auto_cleared_total",
    "Temporary bans cleared on access after expiry",
)

# Invoice metrics
invoices_created_total = Counter(
    "invoices_created_total",
    "Total billing invoices created",
    labelnames=["plan", "status"],
)

invoice_transitions_total = Counter(
    "invoice_transitions_total",
    "Invoice status transitions applied",
    labelnames=["from_status", "to_status"],
)

# Subscription metrics
subscriptions_activated_total = Counter(
    "subscriptions_activated_total",
    "Subscriptions moved to ACTIVE",
    labelnames=["plan"],
)

subscriptions_expired_total = Counter(
    "subscriptions_expired_total",
    "Subscriptions retired from ACTIVE",
    labelnames=["reason"],  # superseded, invoice_expired, invoice_canceled, period_ended, override
)

subscription_conflicts_total = Counter(
    "subscription_conflicts_total",
    "Attempts to create a second ACTIVE subscription for a user",
)

# Key metrics
api_keys_created_total = Counter(
    "api_keys_created_total",
    "Total API keys issued",
    labelnames=["source"],  # registration, owner, admin
)
