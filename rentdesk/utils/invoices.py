# rentdesk/utils/invoices.py
from datetime import date
from decimal import Decimal
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy import extract
from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import Contract, Invoice
from .advance_billing import compute_next_month_proration
from .contracts import rent_amount_at
from .dates import clamped_date, days_in_month, next_month
from .formatting import quantize_money, to_decimal, decimal_or_none
from .invoice_numbering import allocate_invoice_number
from .local_store import LocalStoreError
from .notifications import create_message

HUNDRED = Decimal(100)


class DueInvoice(NamedTuple):
    contract: Contract
    issued_at: date
    amount_eur: Decimal
    partner: Optional[object] = None  # ContractPartner cuando se reparte por cuotas
    fraction: float = 1.0

    def to_dict(self):
        return {
            'contract_id': self.contract.id,
            'contract_name': self.contract.name,
            'issued_at': self.issued_at.isoformat(),
            'amount_eur': decimal_or_none(self.amount_eur),
            'partner_id': self.partner.partner_id if self.partner else self.contract.partner_id,
            'partner_name': self.partner.name if self.partner else self.contract.partner_name,
            'fraction': self.fraction,
        }


def compute_invoice_from_contract(contract, issued_at, number=None, amount_eur=None, partner=None):
    """Calcula (sin guardar) la factura de un contrato para una fecha de emisión.

    EUR corregido = importe x (1 + corrección/100); neto RON = corregido x curso;
    IVA = neto x TVA/100; total = neto + IVA. Todo en Decimal redondeado a céntimos.
    """
    amount = to_decimal(amount_eur) if amount_eur is not None else rent_amount_at(contract, issued_at)
    if amount is None or amount <= 0:
        raise ValueError(f"No se puede calcular el importe EUR del contrato '{contract.name}' para {issued_at}")
    rate = to_decimal(contract.exchange_rate_ron)
    if rate is None or rate <= 0:
        raise ValueError(f"El contrato '{contract.name}' no tiene un curso RON/EUR válido")

    correction = to_decimal(contract.correction_percent, Decimal('0'))
    tva = int(contract.tva_percent or 0)
    amount = quantize_money(amount)
    corrected = quantize_money(amount * (1 + correction / HUNDRED))
    net = quantize_money(corrected * rate)
    vat = quantize_money(net * Decimal(tva) / HUNDRED)

    return Invoice(
        number=number or None,
        contract_id=contract.id,
        contract_name=contract.name,
        issued_at=issued_at,
        due_days=contract.payment_due_days or 0,
        owner_id=contract.owner_id,
        owner_name=contract.owner_name,
        partner_id=partner.partner_id if partner else contract.partner_id,
        partner_name=partner.name if partner else contract.partner_name,
        amount_eur=amount,
        correction_percent=correction,
        corrected_amount_eur=corrected,
        exchange_rate_ron=rate,
        net_ron=net,
        tva_percent=tva,
        vat_ron=vat,
        total_ron=net + vat,
    )


def find_existing_invoice(contract_id, partner_id, partner_name, issued_at):
    """Factura ya emitida para el mismo contrato, socio y fecha (o None)."""
    candidates = Invoice.query.filter_by(contract_id=contract_id, issued_at=issued_at).all()
    for inv in candidates:
        if partner_id is not None and inv.partner_id == partner_id:
            return inv
        if inv.partner_name == partner_name:
            return inv
    return None


def issue_invoice(invoice):
    """Guarda la factura asignándole número. Si ya existe la misma, devuelve la existente."""
    existing = find_existing_invoice(invoice.contract_id, invoice.partner_id, invoice.partner_name, invoice.issued_at)
    if existing:
        current_app.logger.info(
            f"Factura ya emitida para contrato {invoice.contract_id} el {invoice.issued_at}: {existing.number}")
        return existing

    if not invoice.number:
        invoice.number = allocate_invoice_number(invoice.owner_id, invoice.owner_name, year=invoice.issued_at.year)

    db.session.add(invoice)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    current_app.logger.info(f"Factura {invoice.number} guardada (contrato {invoice.contract_id}, total {invoice.total_ron} RON)")

    create_message(
        f"Factura {invoice.number} emisă pentru contractul {invoice.contract_name}: "
        f"{invoice.total_ron:.2f} RON (TVA {invoice.tva_percent}%)",
        level='success',
        related_url=f"/api/invoices/{invoice.id}",
    )
    return invoice


def _split_by_partner(contract, issued_at, amount, fraction):
    shares = [p for p in contract.partner_shares if (to_decimal(p.share_percent) or 0) > 0]
    if len(shares) <= 1:
        return [DueInvoice(contract, issued_at, quantize_money(amount), None, fraction)]
    return [
        DueInvoice(contract, issued_at, quantize_money(amount * to_decimal(p.share_percent) / HUNDRED), p, fraction)
        for p in shares
    ]


def _monthly_due(contract, year, month):
    day = contract.monthly_invoice_day or contract.start_date.day
    issued_at = clamped_date(year, month, day)

    if contract.invoice_month_mode == 'next':
        proration = compute_next_month_proration(contract, year, month)
        if not proration.include:
            return []
        ny, nm = next_month(year, month)
        base = rent_amount_at(contract, date(ny, nm, 1))
        if base is None or base <= 0:
            return []
        return _split_by_partner(contract, issued_at, base * Decimal(str(proration.fraction)), proration.fraction)

    if not (contract.start_date <= issued_at <= contract.effective_end_date):
        return []
    base = rent_amount_at(contract, issued_at)
    if base is None or base <= 0:
        return []
    return _split_by_partner(contract, issued_at, base, 1.0)


def _yearly_due(contract, year, month):
    due = []
    for entry in contract.irregular_invoices:
        if entry.month != month:
            continue
        issued_at = clamped_date(year, month, entry.day)
        if contract.start_date <= issued_at <= contract.effective_end_date:
            due.extend(_split_by_partner(contract, issued_at, to_decimal(entry.amount_eur), 1.0))
    return due


def due_invoices_for_month(year, month):
    """Facturas que corresponde emitir en el mes indicado (sin emitirlas)."""
    if not 1 <= int(month) <= 12:
        raise ValueError(f"Mes inválido: {month}")
    year, month = int(year), int(month)
    month_start = date(year, month, 1)
    month_end = date(year, month, days_in_month(year, month))

    due = []
    for contract in Contract.query.order_by(Contract.name).all():
        if contract.rent_type == 'yearly':
            due.extend(_yearly_due(contract, year, month))
            continue
        # En modo 'next' el solape se comprueba con el mes siguiente
        if contract.invoice_month_mode != 'next':
            if contract.start_date > month_end or contract.effective_end_date < month_start:
                continue
        due.extend(_monthly_due(contract, year, month))
    return due


def issue_due_invoices(year, month):
    """Emite todas las facturas pendientes del mes. Devuelve emitidas y errores."""
    year, month = int(year), int(month)
    issued, errors = [], []
    for item in due_invoices_for_month(year, month):
        try:
            invoice = compute_invoice_from_contract(
                item.contract, item.issued_at, amount_eur=item.amount_eur, partner=item.partner)
            issued.append(issue_invoice(invoice))
        except (ValueError, SQLAlchemyError, LocalStoreError) as e:
            db.session.rollback()
            current_app.logger.error(f"Error emitiendo factura para '{item.contract.name}' ({item.issued_at}): {e}")
            errors.append({'contract_id': item.contract.id, 'contract_name': item.contract.name,
                           'issued_at': item.issued_at.isoformat(), 'error': str(e)})
    current_app.logger.info(f"Emisión {year}-{month:02d}: {len(issued)} facturas, {len(errors)} errores")
    return {'issued': issued, 'errors': errors}


def invoices_for_month(year, month):
    return (Invoice.query
            .filter(extract('year', Invoice.issued_at) == year, extract('month', Invoice.issued_at) == month)
            .order_by(Invoice.issued_at, Invoice.number).all())
