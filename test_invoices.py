# test_invoices.py
from datetime import date
from decimal import Decimal

import pytest

from rentdesk.models import ContractPartner, Invoice, InvoiceSequence, IrregularInvoice, Notification
from rentdesk.utils.invoices import (
    compute_invoice_from_contract, due_invoices_for_month, invoices_for_month, issue_due_invoices, issue_invoice,
)


def test_compute_invoice_amounts(make_contract):
    contract = make_contract()
    invoice = compute_invoice_from_contract(contract, date(2025, 3, 5))
    assert invoice.amount_eur == Decimal('1000.00')
    assert invoice.corrected_amount_eur == Decimal('1000.00')
    assert invoice.net_ron == Decimal('4975.00')
    assert invoice.vat_ron == Decimal('945.25')
    assert invoice.total_ron == Decimal('5920.25')
    assert invoice.due_date == date(2025, 3, 15)
    assert invoice.number is None


def test_compute_invoice_with_correction_rounds_half_up(make_contract):
    contract = make_contract(correction_percent=Decimal('2.50'), exchange_rate_ron=Decimal('4.9743'))
    invoice = compute_invoice_from_contract(contract, date(2025, 3, 5))
    assert invoice.corrected_amount_eur == Decimal('1025.00')
    assert invoice.net_ron == Decimal('5098.66')
    assert invoice.vat_ron == Decimal('968.75')
    assert invoice.total_ron == Decimal('6067.41')


def test_compute_invoice_requires_rate_and_amount(make_contract):
    with pytest.raises(ValueError):
        compute_invoice_from_contract(make_contract(exchange_rate_ron=None), date(2025, 3, 5))
    with pytest.raises(ValueError):
        compute_invoice_from_contract(make_contract(rent_amount_eur=None), date(2025, 3, 5))


def test_issue_invoice_assigns_number_and_posts_message(make_contract):
    contract = make_contract()
    invoice = issue_invoice(compute_invoice_from_contract(contract, date(2025, 3, 5)))
    assert invoice.id is not None
    assert invoice.number == 'MS-2025-00001'
    message = Notification.query.one()
    assert message.message.startswith('Factura MS-2025-00001 emisă pentru contractul Contract 1')
    assert '5920.25 RON' in message.message
    assert message.level == 'success'
    assert message.related_url == f'/api/invoices/{invoice.id}'


def test_issue_invoice_is_idempotent(make_contract):
    contract = make_contract()
    first = issue_invoice(compute_invoice_from_contract(contract, date(2025, 3, 5)))
    second = issue_invoice(compute_invoice_from_contract(contract, date(2025, 3, 5)))
    assert second.id == first.id
    assert Invoice.query.count() == 1
    assert InvoiceSequence.query.filter_by(owner_key='owner-srl').one().next_number == 2
    assert Notification.query.count() == 1


def test_issue_invoice_keeps_manual_number(make_contract):
    contract = make_contract()
    invoice = issue_invoice(compute_invoice_from_contract(contract, date(2025, 3, 5), number='MANUAL-1'))
    assert invoice.number == 'MANUAL-1'
    assert InvoiceSequence.query.count() == 0


@pytest.fixture
def march_contracts(make_contract):
    return {
        'current': make_contract(start_date=date(2025, 1, 1), end_date=date(2025, 12, 31), monthly_invoice_day=5),
        'next_partial': make_contract(start_date=date(2025, 1, 1), end_date=date(2025, 4, 3),
                                      invoice_month_mode='next'),
        'next_too_short': make_contract(start_date=date(2025, 1, 1), end_date=date(2025, 4, 2),
                                        invoice_month_mode='next'),
        'yearly': make_contract(rent_type='yearly', irregular_invoices=[
            IrregularInvoice(month=3, day=15, amount_eur=Decimal('5000.00')),
            IrregularInvoice(month=6, day=15, amount_eur=Decimal('2500.00')),
        ]),
        'expired': make_contract(signed_at=date(2023, 1, 1), start_date=date(2023, 1, 1), end_date=date(2024, 12, 31)),
        'shared': make_contract(partner_shares=[
            ContractPartner(name='Alfa SRL', share_percent=Decimal('60')),
            ContractPartner(name='Beta SRL', share_percent=Decimal('40')),
        ]),
    }


def test_due_invoices_for_month(march_contracts):
    due = due_invoices_for_month(2025, 3)
    by_contract = {}
    for item in due:
        by_contract.setdefault(item.contract.id, []).append(item)

    current = by_contract[march_contracts['current'].id]
    assert [(i.issued_at, i.amount_eur) for i in current] == [(date(2025, 3, 5), Decimal('1000.00'))]

    partial = by_contract[march_contracts['next_partial'].id][0]
    assert partial.issued_at == date(2025, 3, 1)
    assert partial.fraction == pytest.approx(0.1)
    assert partial.amount_eur == Decimal('100.00')

    yearly = by_contract[march_contracts['yearly'].id]
    assert [(i.issued_at, i.amount_eur) for i in yearly] == [(date(2025, 3, 15), Decimal('5000.00'))]

    shared = by_contract[march_contracts['shared'].id]
    assert sorted((i.partner.name, i.amount_eur) for i in shared) == [
        ('Alfa SRL', Decimal('600.00')), ('Beta SRL', Decimal('400.00'))]

    assert march_contracts['next_too_short'].id not in by_contract
    assert march_contracts['expired'].id not in by_contract


def test_due_invoices_rejects_invalid_month(app):
    with pytest.raises(ValueError):
        due_invoices_for_month(2025, 13)


def test_issue_due_invoices_reports_errors_and_is_repeatable(march_contracts, make_contract):
    broken = make_contract(exchange_rate_ron=None)
    result = issue_due_invoices(2025, 3)
    assert len(result['issued']) == 5
    assert [e['contract_id'] for e in result['errors']] == [broken.id]
    assert len({inv.number for inv in result['issued']}) == 5

    again = issue_due_invoices(2025, 3)
    assert sorted(inv.id for inv in again['issued']) == sorted(inv.id for inv in result['issued'])
    assert Invoice.query.count() == 5
    assert len(invoices_for_month(2025, 3)) == 5
    assert invoices_for_month(2025, 4) == []
