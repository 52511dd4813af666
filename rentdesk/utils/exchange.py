# rentdesk/utils/exchange.py
"""Curso EUR -> RON diario con cadena de respaldos.

Orden de resolución para cada fuente (BNR, Banca Transilvania, Raiffeisen):

1. registro de hoy en ``exchange_rate``          -> 'db'  (se salta con force_refresh)
2. descarga en vivo con timeout y guardado       -> nombre de la fuente
3. último registro guardado, de cualquier fecha  -> 'db-stale'
4. caché en memoria del último valor descargado  -> 'cache'
5. curso fijo por defecto                        -> 'default'

Las fuentes son independientes: nunca se usa el curso de una fuente para otra.
"""
import math
import re
from datetime import datetime
from typing import NamedTuple, Optional

import requests
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import db
from ..models import ExchangeRate
from .dates import today_bucharest

BNR_URL = "https://bnr.ro/nbrfxrates.xml"
BT_URL = "https://www.bancatransilvania.ro/curs-valutar"
RAI_URL = "https://banking.raiffeisen.ro/curs-valutar/"
BROWSER_HEADERS = {
    "User-Agent": ("Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
                   "(KHTML, like Gecko) Chrome/122 Safari/537.36"),
}

_BNR_EUR_RE = re.compile(r'<Rate\s+currency="EUR"[^>]*>\s*([\d.,]+)\s*</Rate>', re.IGNORECASE)
_THREE_NUMBERS_RE = re.compile(r"\b(?:EUR|EURO)\b\s+([\d.,]+)\s+([\d.,]+)\s+([\d.,]+)", re.IGNORECASE)
_EUR_LABEL_RE = re.compile(r"\b(?:EUR|EURO)\b", re.IGNORECASE)
_SELL_LABEL_RE = re.compile(r"(?:Vânzare|Vanzare|Sell)\s*[:\-]?\s*([\d.,]+)", re.IGNORECASE)


class RateResult(NamedTuple):
    rate: float
    date: str        # YYYY-MM-DD
    provenance: str  # 'db' | 'db-stale' | 'cache' | 'default' | nombre de la fuente

    def to_dict(self):
        return {'rate': self.rate, 'date': self.date, 'source': self.provenance}


# --- Parseo ---
def parse_rate_value(raw) -> float:
    """'4,9750 lei' -> 4.975. Lanza ValueError si no es un número finito > 0."""
    text = re.sub(r"[^\d.,]", "", str(raw or ""))
    if not text:
        raise ValueError(f"Curso vacío o no numérico: {raw!r}")
    last_sep = max(text.rfind(','), text.rfind('.'))
    if last_sep >= 0:
        # El último separador es el decimal; el resto son separadores de miles
        integer = re.sub(r"[.,]", "", text[:last_sep])
        text = f"{integer}.{text[last_sep + 1:]}"
    value = float(text)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Curso no válido: {raw!r}")
    return value


def html_to_text(html: str) -> str:
    text = re.sub(r"<script[\s\S]*?</script>", " ", html, flags=re.IGNORECASE)
    text = re.sub(r"<style[\s\S]*?</style>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def parse_bnr_xml(xml: str) -> float:
    match = _BNR_EUR_RE.search(xml or "")
    if not match:
        raise ValueError("No se encontró el curso EUR en el XML del BNR")
    return parse_rate_value(match.group(1))


def parse_bt_html(html: str) -> float:
    text = html_to_text(html or "")
    match = _THREE_NUMBERS_RE.search(text)
    if not match:
        raise ValueError("No se encontró el curso de venta EUR en la página de BT")
    return parse_rate_value(match.group(3))


def parse_rai_html(html: str) -> float:
    text = html_to_text(html or "")
    eur = _EUR_LABEL_RE.search(text)
    if eur:
        window = text[eur.start():eur.start() + 300]
        labelled = _SELL_LABEL_RE.search(window)
        if labelled:
            try:
                return parse_rate_value(labelled.group(1))
            except ValueError:
                pass  # se prueba el formato de tres columnas
    match = _THREE_NUMBERS_RE.search(text)
    if not match:
        raise ValueError("No se encontró el curso de venta EUR en la página de Raiffeisen")
    return parse_rate_value(match.group(3))


class RateSource(NamedTuple):
    name: str
    key: str
    url: str
    parser: object
    headers: Optional[dict] = None


BNR = RateSource('bnr', 'EURRON', BNR_URL, parse_bnr_xml)
BT = RateSource('bt', 'BT_EUR_SELL', BT_URL, parse_bt_html, BROWSER_HEADERS)
RAI = RateSource('rai', 'RAI_EUR_SELL', RAI_URL, parse_rai_html, BROWSER_HEADERS)
SOURCES = {source.name: source for source in (BNR, BT, RAI)}


def get_source(name):
    try:
        return SOURCES[name]
    except KeyError:
        raise LookupError(f"Fuente de curso desconocida: {name}") from None


# --- Caché en memoria ---
class MemoryRateCache:
    """Último curso descargado por clave, solo para la vida del proceso."""

    def __init__(self):
        self._values = {}

    def get(self, key):
        return self._values.get(key)

    def set(self, key, value):
        self._values[key] = value

    def clear(self):
        self._values.clear()


memory_cache = MemoryRateCache()


# --- Estrategias ---
class TodayRecordStrategy:
    provenance = 'db'

    def try_resolve(self, source, today):
        record = ExchangeRate.query.filter_by(key=source.key, date=today).first()
        if record:
            return RateResult(record.rate, record.date.isoformat(), self.provenance)
        return None


class LiveFetchStrategy:

    def __init__(self, cache):
        self.cache = cache

    def fetch(self, source):
        timeout = current_app.config.get('EXCHANGE_FETCH_TIMEOUT', 10)
        current_app.logger.info(f"Solicitando curso {source.name} desde: {source.url}")
        response = requests.get(source.url, headers=source.headers, timeout=timeout)
        response.raise_for_status()
        return source.parser(response.text)

    def try_resolve(self, source, today):
        rate = self.fetch(source)
        self.cache.set(source.key, (rate, today.isoformat()))
        try:
            persist_rate(source.key, today, rate)
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning(f"Curso {source.name} descargado pero no guardado: {e}")
        return RateResult(rate, today.isoformat(), source.name)


class StaleRecordStrategy:
    provenance = 'db-stale'

    def try_resolve(self, source, today):
        record = (ExchangeRate.query.filter_by(key=source.key)
                  .order_by(ExchangeRate.date.desc()).first())
        if record:
            return RateResult(record.rate, record.date.isoformat(), self.provenance)
        return None


class MemoryCacheStrategy:
    provenance = 'cache'

    def __init__(self, cache):
        self.cache = cache

    def try_resolve(self, source, today):
        cached = self.cache.get(source.key)
        if cached:
            rate, cached_date = cached
            return RateResult(rate, cached_date, self.provenance)
        return None


class DefaultRateStrategy:
    provenance = 'default'

    def try_resolve(self, source, today):
        return RateResult(float(current_app.config.get('EXCHANGE_DEFAULT_RATE', 5.0)),
                          today.isoformat(), self.provenance)


# Errores que hacen pasar al siguiente nivel de la cadena
TIER_ERRORS = (requests.exceptions.RequestException, ValueError, SQLAlchemyError)


def build_strategy_chain(force_refresh=False, cache=None):
    cache = cache if cache is not None else memory_cache
    chain = [] if force_refresh else [TodayRecordStrategy()]
    chain += [LiveFetchStrategy(cache), StaleRecordStrategy(), MemoryCacheStrategy(cache), DefaultRateStrategy()]
    return chain


def persist_rate(key, day, rate):
    """Upsert idempotente por (key, date)."""
    record = ExchangeRate.query.filter_by(key=key, date=day).first()
    if record:
        record.rate = rate
        record.fetched_at = datetime.utcnow()
    else:
        db.session.add(ExchangeRate(key=key, date=day, rate=rate, fetched_at=datetime.utcnow()))
    try:
        db.session.commit()
    except IntegrityError:
        # Otra petición insertó el mismo día a la vez
        db.session.rollback()
        record = ExchangeRate.query.filter_by(key=key, date=day).first()
        record.rate = rate
        record.fetched_at = datetime.utcnow()
        db.session.commit()


def get_rate(source_name, force_refresh=False, cache=None):
    """Resuelve el curso del día para una fuente siguiendo la cadena de respaldos."""
    source = get_source(source_name)
    today = today_bucharest()
    for strategy in build_strategy_chain(force_refresh, cache):
        try:
            result = strategy.try_resolve(source, today)
        except TIER_ERRORS as e:
            if isinstance(e, SQLAlchemyError):
                db.session.rollback()
            current_app.logger.warning(
                f"Curso {source.name}: fallo en {type(strategy).__name__}: {e}")
            continue
        if result is not None:
            return result
    raise RuntimeError(f"No se pudo resolver el curso {source.name}")


def get_daily_eur_ron(force_refresh=False, cache=None):
    return get_rate('bnr', force_refresh=force_refresh, cache=cache)


def get_daily_bt_eur_sell(force_refresh=False, cache=None):
    return get_rate('bt', force_refresh=force_refresh, cache=cache)


def get_daily_rai_eur_sell(force_refresh=False, cache=None):
    return get_rate('rai', force_refresh=force_refresh, cache=cache)


def latest_rate(source_name):
    """Último registro guardado de una fuente (o None)."""
    source = get_source(source_name)
    return (ExchangeRate.query.filter_by(key=source.key)
            .order_by(ExchangeRate.date.desc()).first())
