# rentdesk/utils/dates.py
import calendar
import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

BUCHAREST_TZ = ZoneInfo("Europe/Bucharest")
MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def today_bucharest() -> date:
    """Fecha de hoy según el calendario de Europe/Bucharest."""
    return datetime.now(BUCHAREST_TZ).date()


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def next_month(year: int, month: int) -> tuple:
    """Devuelve (año, mes) del mes siguiente, con paso de diciembre a enero."""
    if month == 12:
        return year + 1, 1
    return year, month + 1


def add_months(year: int, month: int, count: int) -> tuple:
    index = (year * 12 + (month - 1)) + count
    return index // 12, index % 12 + 1


def clamped_date(year: int, month: int, day: int) -> date:
    """Fecha con el día recortado al último día del mes (31 -> 28/29/30)."""
    return date(year, month, min(max(1, day), days_in_month(year, month)))


def parse_iso_date(value):
    """Acepta date, datetime o 'YYYY-MM-DD'. Lanza ValueError si no es válido."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Fecha inválida: {value!r}")
    return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()


def month_key(value) -> str:
    """Normaliza una fecha o un 'YYYY-MM[-DD]' a la clave de mes 'YYYY-MM'."""
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"
    text = str(value or '').strip()[:7]
    if not MONTH_KEY_RE.match(text):
        raise ValueError(f"Formato de mes inválido (YYYY-MM): {value!r}")
    return text


def is_month_key(value) -> bool:
    return isinstance(value, str) and bool(MONTH_KEY_RE.match(value))
