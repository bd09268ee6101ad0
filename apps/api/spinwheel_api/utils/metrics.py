"""Prometheus metrics."""

from prometheus_client import Counter

# Spin admission
spin_admissions = Counter(
    "spinwheel_spin_admissions_total",
    "Spin admission attempts by outcome",
    ["outcome"],
)

prize_stock_misses = Counter(
    "spinwheel_prize_stock_misses_total",
    "Spins that fell back to no-prize because stock ran out",
)

# Bonus accrual
bonus_grants = Counter(
    "spinwheel_bonus_grants_total",
    "Bonus ledger entries written",
    ["source"],
)

# Manager workflow
task_decisions = Counter(
    "spinwheel_task_decisions_total",
    "Manager task decisions",
    ["decision"],
)

# Store
transaction_retries = Counter(
    "spinwheel_transaction_retries_total",
    "Transactions retried after a serialization conflict",
    ["operation"],
)

# Notifications
notifications_enqueued = Counter(
    "spinwheel_notifications_total",
    "Notifications handed to the sink",
    ["event", "status"],
)
