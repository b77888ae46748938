from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

ENFORCEMENT_ACTIONS = Counter(
    "enforcement_actions_total",
    "Suspension strategy calls against enforcement targets",
    ["action", "method", "outcome"],
)

RECONCILIATION_TRANSACTIONS = Counter(
    "reconciliation_transactions_total",
    "Gateway transactions examined by payment reconciliation",
    ["gateway", "outcome"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def record_enforcement_action(action: str, method: str, outcome: str) -> None:
    ENFORCEMENT_ACTIONS.labels(action=action, method=method, outcome=outcome).inc()


def record_reconciliation(gateway: str, outcome: str) -> None:
    RECONCILIATION_TRANSACTIONS.labels(gateway=gateway, outcome=outcome).inc()
