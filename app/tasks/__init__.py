from app.tasks.enforcement import (
    run_payment_reconciliation,
    run_restoration_check,
    run_suspension_check,
)

__all__ = [
    "run_suspension_check",
    "run_restoration_check",
    "run_payment_reconciliation",
]
