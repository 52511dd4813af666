# rentdesk/utils/contracts.py

from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import Contract, IndexingDate
from .dates import add_months, clamped_date, today_bucharest
from .formatting import quantize_money, to_decimal

MAX_INDEXING_DATES = 600


def compute_future_indexing_dates(contract):
    """Fechas previstas de indexación entre la firma y el fin efectivo del contrato."""
    day = contract.indexing_day
    month = contract.indexing_month
    every = contract.how_often_is_indexing
    if not all(isinstance(v, int) for v in (day, month, every)):
        return []
    if not (1 <= day <= 31 and 1 <= month <= 12 and 1 <= every <= 12):
        return []
    anchor = contract.signed_at
    end = contract.effective_end_date
    if not anchor or not end:
        return []

    year = anchor.year
    current = clamped_date(year, month, day)
    safety = 0
    while current < anchor and safety < 1200:
        year, month = add_months(year, month, every)
        current = clamped_date(year, month, day)
        safety += 1

    dates = []
    while current <= end and len(dates) < MAX_INDEXING_DATES:
        dates.append(current)
        year, month = add_months(year, month, every)
        current = clamped_date(year, month, day)
    return dates


def sync_indexing_dates(contract):
    """Añade las fechas previstas que falten sin tocar las ya registradas."""
    existing = {entry.forecast_date for entry in contract.indexing_dates}
    added = 0
    for forecast in compute_future_indexing_dates(contract):
        if forecast not in existing:
            contract.indexing_dates.append(IndexingDate(forecast_date=forecast, done=False))
            added += 1
    return added


def rent_amount_at(contract, on_date):
    """Importe EUR vigente en una fecha.

    Contratos anuales: la entrada irregular del mismo mes y día. Si no, la última
    indexación con importe nuevo cuya fecha efectiva es <= on_date y, en su
    defecto, el alquiler base del contrato.
    """
    if contract.rent_type == 'yearly':
        for entry in contract.irregular_invoices:
            if entry.month == on_date.month and entry.day == on_date.day:
                return to_decimal(entry.amount_eur)
    candidates = sorted(
        (entry for entry in contract.indexing_dates
         if entry.new_rent_amount is not None and entry.effective_date <= on_date),
        key=lambda entry: entry.effective_date,
    )
    if candidates:
        return to_decimal(candidates[-1].new_rent_amount)
    return to_decimal(contract.rent_amount_eur)


def next_indexing_date(contract, today=None):
    today = today or today_bucharest()
    pending = sorted(e.forecast_date for e in contract.indexing_dates
                     if not e.done and e.forecast_date >= today)
    return pending[0] if pending else None


def active_contracts(on_date=None):
    on_date = on_date or today_bucharest()
    return [c for c in Contract.query.order_by(Contract.name).all() if c.effective_end_date >= on_date]


def update_contracts_exchange_rate(rate, only_active=True):
    """Aplica un curso RON/EUR a los contratos (por defecto solo a los activos)."""
    rate = to_decimal(rate)
    if rate is None or rate <= 0:
        raise ValueError("El curso debe ser un número positivo.")
    today = today_bucharest()
    contracts = Contract.query.all()
    updated = 0
    for contract in contracts:
        if only_active and contract.effective_end_date < today:
            continue
        contract.exchange_rate_ron = rate
        updated += 1
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    current_app.logger.info(f"Curso {rate} aplicado a {updated} contratos (solo activos={only_active}).")
    return updated


def apply_indexing(contract, entry, inflation_percent, applied_on=None):
    """Nuevo alquiler = alquiler vigente x (1 + inflación/100), redondeado a céntimos."""
    applied_on = applied_on or entry.forecast_date
    base = rent_amount_at(contract, applied_on)
    if base is None or base <= 0:
        raise ValueError("El contrato no tiene un alquiler vigente al que aplicar la indexación.")
    factor = Decimal(1) + to_decimal(inflation_percent) / Decimal(100)
    entry.new_rent_amount = quantize_money(base * factor)
    entry.actual_date = applied_on
    entry.done = True
    return entry.new_rent_amount
