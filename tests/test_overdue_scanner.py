from datetime import timedelta

from app.models.billing import InvoiceStatus
from app.models.subscriber import CustomerStatus
from app.services.overdue_scanner import OverdueScanner, billing_today
from app.services.state_store import StateStore


def _scanner(db_session):
    return OverdueScanner(StateStore(db_session), "UTC")


def test_grace_boundary(db_session, make_customer, make_invoice, today):
    inside = make_customer(static_ip="10.0.0.10")
    boundary = make_customer(static_ip="10.0.0.11")
    make_invoice(inside, days_overdue=6)
    make_invoice(boundary, days_overdue=7)

    cases = _scanner(db_session).scan(7, today=today)

    assert [case.customer.id for case in cases] == [boundary.id]
    assert cases[0].days_overdue == 7


def test_zero_grace_includes_invoices_due_today(db_session, customer, make_invoice, today):
    make_invoice(customer, days_overdue=0)

    assert len(_scanner(db_session).scan(0, today=today)) == 1


def test_future_and_paid_invoices_are_ignored(db_session, customer, make_invoice, today):
    make_invoice(customer, days_overdue=-3)
    make_invoice(customer, days_overdue=30, status=InvoiceStatus.paid)
    make_invoice(customer, days_overdue=30, status=InvoiceStatus.cancelled)

    assert _scanner(db_session).scan(7, today=today) == []


def test_skip_reasons(db_session, make_customer, make_invoice, today):
    disabled = make_customer(static_ip="10.0.0.20", auto_suspension_enabled=False)
    suspended = make_customer(static_ip="10.0.0.21", status=CustomerStatus.suspended)
    inactive = make_customer(static_ip="10.0.0.22", status=CustomerStatus.inactive)
    for customer in (disabled, suspended, inactive):
        make_invoice(customer, days_overdue=20)

    evaluations = _scanner(db_session).scan_all(7, today=today)
    reasons = {evaluation.customer.id: evaluation.skip_reason for evaluation in evaluations}

    assert reasons == {
        disabled.id: "auto_suspension_disabled",
        suspended.id: "already_suspended",
        inactive.id: "customer_inactive",
    }
    assert not any(evaluation.actionable for evaluation in evaluations)


def test_one_case_per_customer_using_oldest_invoice(db_session, customer, make_invoice, today):
    older = make_invoice(customer, days_overdue=40)
    make_invoice(customer, days_overdue=10)

    scanner = _scanner(db_session)
    cases = scanner.scan(7, today=today)
    evaluations = scanner.scan_all(7, today=today)

    assert len(cases) == 1
    assert cases[0].invoice.id == older.id
    assert cases[0].days_overdue == 40
    assert [evaluation.skip_reason for evaluation in evaluations] == [None, "duplicate_customer"]


def test_scan_is_read_only(db_session, customer, make_invoice, today):
    make_invoice(customer, days_overdue=10)

    _scanner(db_session).scan(7, today=today)
    db_session.refresh(customer)

    assert customer.status == CustomerStatus.active


def test_billing_today_falls_back_to_utc_for_unknown_zone():
    assert billing_today("Not/AZone") == billing_today("UTC")


def test_scanner_uses_billing_timezone(db_session, customer, make_invoice):
    scanner = OverdueScanner(StateStore(db_session), "Asia/Jakarta")
    make_invoice(customer, days_overdue=0, due_date=billing_today("Asia/Jakarta") - timedelta(days=8))

    cases = scanner.scan(7)

    assert len(cases) == 1
    assert cases[0].days_overdue == 8
