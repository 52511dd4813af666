# rentdesk/utils/inflation.py
"""Índice HICP de la zona euro (2015=100) para indexar alquileres.

La serie mensual se descarga del BCE (SDMX JSON) y se guarda en ``hicp_index``.
Si el BCE no responde se combinan los meses guardados con el fichero manual
``LOCAL_DATA_DIR/hicp-fallback.json`` ({"YYYY-MM": índice}).
"""
import math
from datetime import datetime, timedelta

import requests
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import HicpIndex, HICP_SERIES_KEY
from . import local_store
from .dates import month_key, is_month_key, today_bucharest

ECB_HICP_URL = ("https://sdw-wsrest.ecb.europa.eu/service/data/ICP/M.U2.N.000000.4.INX"
                "?startPeriod=2000-01&endPeriod={end}&detail=dataonly")
ECB_HEADERS = {
    "Accept": "application/vnd.sdmx.data+json;version=1.0",
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122 Safari/537.36",
}
HICP_FALLBACK_FILE = "hicp-fallback.json"


# --- Parseo SDMX ---
def parse_sdmx_series(payload):
    """{'2024-01': 125.3, ...} a partir de la respuesta SDMX JSON del BCE."""
    try:
        series = payload['dataSets'][0]['series']
        first_key = next(iter(series))
        observations = series[first_key]['observations']
        dimensions = payload['structure']['dimensions']['observation']
    except (KeyError, IndexError, TypeError, StopIteration):
        raise ValueError("Respuesta SDMX del BCE sin serie u observaciones") from None

    time_dim = next((d for d in dimensions if d.get('id') == 'TIME_PERIOD'), None)
    times = (time_dim or {}).get('values') or []
    if not observations or not times:
        raise ValueError("Respuesta SDMX del BCE sin periodos")

    result = {}
    for position, period in enumerate(times):
        month = period.get('id')
        obs = observations.get(str(position))
        value = obs[0] if obs else None
        if month and isinstance(value, (int, float)) and not isinstance(value, bool):
            result[month] = float(value)
    return result


def fetch_hicp_series(end_month):
    url = ECB_HICP_URL.format(end=end_month)
    timeout = current_app.config.get('INFLATION_FETCH_TIMEOUT', 20)
    current_app.logger.info(f"Solicitando serie HICP al BCE: {url}")
    response = requests.get(url, headers=ECB_HEADERS, timeout=timeout)
    response.raise_for_status()
    return parse_sdmx_series(response.json())


# --- Fichero manual de respaldo ---
def read_hicp_fallback():
    data = local_store.read_json(HICP_FALLBACK_FILE, {})
    if not isinstance(data, dict):
        return {}
    return {k: float(v) for k, v in data.items()
            if is_month_key(k) and isinstance(v, (int, float)) and not isinstance(v, bool)}


def write_hicp_fallback(values):
    clean = {k: float(v) for k, v in (values or {}).items()
             if is_month_key(k) and isinstance(v, (int, float)) and math.isfinite(v)}
    local_store.write_json(HICP_FALLBACK_FILE, dict(sorted(clean.items())))
    return clean


def upsert_hicp_fallback(month, index):
    month = (month or '').strip()
    if not is_month_key(month):
        raise ValueError("Formato de mes inválido (YYYY-MM)")
    try:
        index = float(index)
    except (TypeError, ValueError):
        raise ValueError("Índice inválido") from None
    if not math.isfinite(index) or index <= 0:
        raise ValueError("Índice inválido")
    values = read_hicp_fallback()
    values[month] = index
    return write_hicp_fallback(values)


def delete_hicp_fallback(month):
    month = (month or '').strip()
    values = read_hicp_fallback()
    if month not in values:
        return values
    del values[month]
    return write_hicp_fallback(values)


# --- Caché en BD ---
def _stored_series():
    rows = HicpIndex.query.filter_by(series_key=HICP_SERIES_KEY).all()
    return {row.month: row.value for row in rows}


def _fetched_recently():
    """True si la serie guardada se descargó dentro de HICP_REFRESH_HOURS."""
    last = db.session.query(func.max(HicpIndex.fetched_at)).filter(
        HicpIndex.series_key == HICP_SERIES_KEY).scalar()
    hours = current_app.config.get('HICP_REFRESH_HOURS', 24)
    return last is not None and datetime.utcnow() - last < timedelta(hours=hours)


def _store_series(series):
    existing = {row.month: row for row in HicpIndex.query.filter_by(series_key=HICP_SERIES_KEY).all()}
    now = datetime.utcnow()
    for month, value in series.items():
        row = existing.get(month)
        if row:
            row.value = value
            row.fetched_at = now
        else:
            db.session.add(HicpIndex(series_key=HICP_SERIES_KEY, month=month, value=value, fetched_at=now))
    db.session.commit()


def ensure_hicp_series(target_month, force_refresh=False):
    """Serie HICP que cubra target_month, o None si no hay datos de ninguna fuente."""
    target_month = month_key(target_month)
    stored = {}
    recent = False
    try:
        stored = _stored_series()
        recent = bool(stored) and _fetched_recently()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning(f"HICP: no se pudo leer la caché en BD: {e}")

    if not force_refresh and target_month in stored:
        return stored
    # Mes aún no publicado: la serie descargada hace poco es la más reciente que hay
    if not force_refresh and recent and target_month > max(stored):
        current_app.logger.info(f"HICP: {target_month} aún no publicado, se usa la serie guardada hasta {max(stored)}")
        return stored

    try:
        series = fetch_hicp_series(target_month)
    except requests.exceptions.Timeout:
        current_app.logger.warning("HICP: timeout consultando el BCE")
    except requests.exceptions.RequestException as e:
        current_app.logger.warning(f"HICP: error de conexión con el BCE: {e}")
    except ValueError as e:  # JSON inválido o estructura inesperada
        current_app.logger.warning(f"HICP: respuesta inválida del BCE: {e}")
    else:
        if series:
            try:
                _store_series(series)
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.warning(f"HICP: serie descargada pero no guardada: {e}")
            return {**stored, **series}

    merged = {**read_hicp_fallback(), **stored}
    return merged or None


def _latest_on_or_before(keys, target):
    candidate = None
    for key in keys:
        if key <= target:
            candidate = key
        else:
            break
    return candidate


def get_hicp_index(month, force_refresh=False):
    """Valor HICP del último mes disponible <= month (o None)."""
    month = month_key(month)
    series = ensure_hicp_series(month, force_refresh)
    if not series:
        return None
    candidate = _latest_on_or_before(sorted(series), month)
    return series[candidate] if candidate else None


def get_euro_inflation_percent(from_month, to_month=None, force_refresh=False):
    """Inflación acumulada entre dos meses: ((fin / inicio) - 1) * 100."""
    desired_from = month_key(from_month)
    desired_to = month_key(to_month or today_bucharest())
    series = ensure_hicp_series(desired_to, force_refresh)
    if not series:
        return None
    keys = sorted(series)
    start = _latest_on_or_before(keys, desired_from) or keys[0]
    end = _latest_on_or_before(keys, desired_to) or keys[-1]
    percent = (series[end] / series[start] - 1) * 100
    return {'percent': percent, 'from_month': start, 'to_month': end,
            'from_index': series[start], 'to_index': series[end]}
