# rentdesk/utils/invoice_numbering.py
"""Numeración de facturas por propietario.

Cada propietario tiene su propio contador (``InvoiceSequence``). El incremento
se hace con un único ``UPDATE ... RETURNING`` en la base de datos, de modo que
peticiones concurrentes nunca reciben el mismo número. Si la base de datos no
está configurada o falla, se usa un contador en
``LOCAL_DATA_DIR/invoice_settings.json`` (seguro solo dentro de un proceso).
"""
import re
import threading
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import db
from ..models import InvoiceSequence
from . import local_store
from .dates import today_bucharest

DEFAULT_SERIES = "MS"
DEFAULT_PAD_WIDTH = 5
DEFAULT_INCLUDE_YEAR = True
FALLBACK_OWNER_KEY = "owner"
LOCAL_SETTINGS_FILE = "invoice_settings.json"

_local_lock = threading.Lock()


def owner_key(owner_id=None, owner_name=None):
    """Clave del contador: id del propietario, slug de su nombre o 'owner'."""
    if owner_id is not None and str(owner_id).strip():
        return str(owner_id).strip()
    slug = re.sub(r"[^a-z0-9]+", "-", (owner_name or "").lower()).strip("-")
    return slug or FALLBACK_OWNER_KEY


def format_invoice_number(series, sequence, pad_width, include_year, year):
    seq = str(int(sequence)).zfill(int(pad_width))
    if include_year:
        return f"{series}-{year}-{seq}"
    return f"{series}-{seq}"


def _use_local_store():
    return current_app.config.get('STORAGE_BACKEND', 'db') == 'local'


def _default_settings(key):
    return {
        'ownerKey': key,
        'series': DEFAULT_SERIES,
        'nextNumber': 1,
        'padWidth': DEFAULT_PAD_WIDTH,
        'includeYear': DEFAULT_INCLUDE_YEAR,
        'updatedAt': None,
    }


def _sequence_to_dict(seq):
    return {
        'ownerKey': seq.owner_key,
        'series': seq.series,
        'nextNumber': seq.next_number,
        'padWidth': seq.pad_width,
        'includeYear': seq.include_year,
        'updatedAt': seq.updated_at.isoformat() if seq.updated_at else None,
    }


# --- Ruta base de datos ---
def _increment_in_db(key):
    """Incrementa atómicamente y devuelve (número_consumido, series, pad, include_year)."""
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.owner_key == key)
        .values(next_number=InvoiceSequence.next_number + 1, updated_at=datetime.utcnow())
        .returning(InvoiceSequence.next_number, InvoiceSequence.series,
                   InvoiceSequence.pad_width, InvoiceSequence.include_year)
        .execution_options(synchronize_session=False)
    )
    for _attempt in range(2):
        row = db.session.execute(stmt).first()
        if row is not None:
            db.session.commit()
            return row.next_number - 1, row.series, row.pad_width, row.include_year
        # Primera factura del propietario: se crea el contador con el 1 ya consumido
        try:
            db.session.add(InvoiceSequence(
                owner_key=key, series=DEFAULT_SERIES, next_number=2,
                pad_width=DEFAULT_PAD_WIDTH, include_year=DEFAULT_INCLUDE_YEAR,
            ))
            db.session.commit()
            return 1, DEFAULT_SERIES, DEFAULT_PAD_WIDTH, DEFAULT_INCLUDE_YEAR
        except IntegrityError:
            # Otro proceso creó el contador a la vez: se reintenta el UPDATE
            db.session.rollback()
    raise SQLAlchemyError(f"No se pudo incrementar el contador '{key}'")


# --- Ruta fichero local ---
def _increment_local(key):
    with _local_lock:
        # Un fichero corrupto no se sobrescribe: reiniciaría los contadores
        data = local_store.read_json(LOCAL_SETTINGS_FILE, {}, strict=True)
        entry = {**_default_settings(key), **(data.get(key) or {})}
        current = int(entry.get('nextNumber') or 1)
        entry['nextNumber'] = current + 1
        entry['updatedAt'] = datetime.utcnow().isoformat()
        data[key] = entry
        local_store.write_json(LOCAL_SETTINGS_FILE, data)
    return current, entry['series'], int(entry['padWidth']), bool(entry['includeYear'])


def allocate_invoice_number(owner_id=None, owner_name=None, year=None):
    """Reserva el siguiente número de factura del propietario y lo devuelve formateado."""
    key = owner_key(owner_id, owner_name)
    year = year or today_bucharest().year

    if _use_local_store():
        sequence, series, pad_width, include_year = _increment_local(key)
    else:
        try:
            sequence, series, pad_width, include_year = _increment_in_db(key)
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning(
                f"Numeración: BD no disponible para '{key}', se usa el contador local: {e}")
            sequence, series, pad_width, include_year = _increment_local(key)

    number = format_invoice_number(series, sequence, pad_width, include_year, year)
    current_app.logger.info(f"Número de factura asignado a '{key}': {number}")
    return number


# --- Ajustes de numeración ---
def get_invoice_settings(owner_id=None, owner_name=None):
    key = owner_key(owner_id, owner_name)
    if not _use_local_store():
        try:
            seq = InvoiceSequence.query.filter_by(owner_key=key).first()
            return _sequence_to_dict(seq) if seq else _default_settings(key)
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning(f"Ajustes de numeración: BD no disponible, se lee el fichero local: {e}")
    data = local_store.read_json(LOCAL_SETTINGS_FILE, {})
    return {**_default_settings(key), **(data.get(key) or {}), 'ownerKey': key}


def validate_invoice_settings(series, next_number, pad_width):
    series = (series or '').strip()
    if not series or len(series) > 20:
        raise ValueError("La serie es obligatoria (máx. 20 caracteres).")
    if int(next_number) < 1:
        raise ValueError("El siguiente número debe ser >= 1.")
    if not (1 <= int(pad_width) <= 10):
        raise ValueError("El ancho de relleno debe estar entre 1 y 10.")
    return series


def save_invoice_settings(owner_id=None, owner_name=None, series=DEFAULT_SERIES, next_number=1,
                          pad_width=DEFAULT_PAD_WIDTH, include_year=DEFAULT_INCLUDE_YEAR):
    key = owner_key(owner_id, owner_name)
    series = validate_invoice_settings(series, next_number, pad_width)

    if not _use_local_store():
        try:
            seq = InvoiceSequence.query.filter_by(owner_key=key).first()
            if not seq:
                seq = InvoiceSequence(owner_key=key)
                db.session.add(seq)
            seq.series = series
            seq.next_number = int(next_number)
            seq.pad_width = int(pad_width)
            seq.include_year = bool(include_year)
            db.session.commit()
            current_app.logger.info(f"Ajustes de numeración guardados para '{key}'")
            return _sequence_to_dict(seq)
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning(f"Ajustes de numeración: BD no disponible, se guarda en fichero local: {e}")

    with _local_lock:
        # Un fichero corrupto no se sobrescribe: reiniciaría los contadores
        data = local_store.read_json(LOCAL_SETTINGS_FILE, {}, strict=True)
        entry = {
            'ownerKey': key, 'series': series, 'nextNumber': int(next_number),
            'padWidth': int(pad_width), 'includeYear': bool(include_year),
            'updatedAt': datetime.utcnow().isoformat(),
        }
        data[key] = entry
        local_store.write_json(LOCAL_SETTINGS_FILE, data)
    return entry
