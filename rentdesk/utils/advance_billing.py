# rentdesk/utils/advance_billing.py
"""Facturación por adelantado (modo 'next'): la factura emitida en el mes M
cubre el alquiler del mes M+1.

Reglas para el mes siguiente al de emisión:

1. Sin solape con el mes siguiente -> no se factura.
2. Si el contrato termina el día 1 o 2 del mes siguiente -> no se factura.
3. Si termina a partir del día 3 pero antes de fin de mes -> fracción día/días_del_mes.
4. Si cubre el mes entero -> fracción 1.
"""
from datetime import date
from typing import NamedTuple

from .dates import days_in_month, next_month

# Primer día de cobertura que ya se factura (días 1 y 2 no)
MIN_BILLABLE_DAY = 3


class ProrationResult(NamedTuple):
    include: bool
    fraction: float


NOT_BILLED = ProrationResult(False, 0.0)


def _require_date(value, field_name):
    if not isinstance(value, date):
        raise ValueError(f"Fecha '{field_name}' inválida en el contrato: {value!r}")
    return value


def compute_next_month_proration(contract, issue_year, issue_month):
    """Calcula si la factura adelantada del mes de emisión se incluye y qué fracción cubre."""
    if contract.rent_type != 'monthly' or contract.invoice_month_mode != 'next':
        return NOT_BILLED
    if not 1 <= int(issue_month) <= 12:
        raise ValueError(f"Mes de emisión inválido: {issue_month}")

    start = _require_date(contract.start_date, 'start_date')
    end = _require_date(contract.effective_end_date, 'end_date')
    if start > end:
        raise ValueError(f"El contrato empieza ({start}) después de terminar ({end})")

    year, month = next_month(int(issue_year), int(issue_month))
    total_days = days_in_month(year, month)
    month_start = date(year, month, 1)
    month_end = date(year, month, total_days)

    if end < month_start or start > month_end:
        return NOT_BILLED

    coverage_end_day = total_days if end > month_end else end.day
    if coverage_end_day < MIN_BILLABLE_DAY:
        return NOT_BILLED
    if coverage_end_day >= total_days:
        return ProrationResult(True, 1.0)
    return ProrationResult(True, coverage_end_day / total_days)
