"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge, Histogram

# Subscription metrics
subscriptions_created_total = Counter(
    "subscriptions_created_total",
    "Total subscriptions created",
    labelnames=["plan_interval", "status"],  # status: trial, active
)

subscriptions_canceled_total = Counter(
    "subscriptions_canceled_total",
    "Total subscriptions canceled",
    labelnames=["mode"],  # immediate, period_end
)

subscription_plan_changes_total = Counter(
    "subscription_plan_changes_total",
    "Total plan changes",
    labelnames=["direction"],  # upgrade, downgrade
)

subscriptions_expired_total = Counter(
    "subscriptions_expired_total",
    "Total subscriptions expired",
    labelnames=["reason"],  # payment_failed, trial_ended, not_renewed
)

subscriptions_active_gauge = Gauge(
    "subscriptions_active",
    "Number of currently active subscriptions",
)

mrr_amount = Gauge(
    "mrr_amount",
    "Monthly Recurring Revenue in major currency units",
    labelnames=["currency"],
)

# Payment metrics
payments_attempted_total = Counter(
    "payments_attempted_total",
    "Total payment attempts",
    labelnames=["status", "payment_type", "currency"],  # status: succeeded, failed
)

payment_amount_total = Counter(
    "payment_amount_total",
    "Total charged amount in major currency units",
    labelnames=["status", "currency"],
)

# Renewal metrics
renewals_processed_total = Counter(
    "renewals_processed_total",
    "Subscriptions handled by renewal runs",
    labelnames=["outcome"],  # renewed, failed, expired, skipped, error
)

renewal_run_duration_seconds = Histogram(
    "renewal_run_duration_seconds",
    "Duration of a renewal batch run",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# Discount metrics
discount_redemptions_total = Counter(
    "discount_redemptions_total",
    "Discount applications recorded in the usage ledger",
    labelnames=["discount_type", "payment_type"],
)

discount_validations_rejected_total = Counter(
    "discount_validations_rejected_total",
    "Discount code validations that failed",
    labelnames=["reason"],
)
