# rentdesk/tasks.py
from datetime import timedelta
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .models import db
from .utils.contracts import active_contracts, next_indexing_date
from .utils.dates import today_bucharest
from .utils.exchange import get_daily_eur_ron, get_daily_bt_eur_sell
from .utils.notifications import create_message


# --- Curso diario (BNR + BT) ---
def run_exchange_refresh():
    """Fuerza la descarga de los cursos BNR y BT. Devuelve los resultados por fuente."""
    bnr = get_daily_eur_ron(force_refresh=True)
    bt = get_daily_bt_eur_sell(force_refresh=True)
    current_app.logger.info(
        f"Cursos actualizados: BNR {bnr.rate} ({bnr.provenance}), BT {bt.rate} ({bt.provenance})")
    return {'bnr': bnr.to_dict(), 'bt': bt.to_dict()}


def refresh_exchange_rates(app):
    with app.app_context():  # El scheduler corre fuera de cualquier petición
        current_app.logger.info("Tarea Programada: Actualizando cursos de cambio...")
        try:
            run_exchange_refresh()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Error actualizando cursos de cambio: {e}", exc_info=True)


# --- Recordatorios de indexación ---
def run_indexing_reminders(today=None):
    """Avisa cuando la próxima indexación está exactamente a 60, 30 o 20 días."""
    today = today or today_bucharest()
    thresholds = current_app.config.get('INDEXING_REMINDER_DAYS', (60, 30, 20))
    sent = []
    for contract in active_contracts(today):
        upcoming = next_indexing_date(contract, today)
        if not upcoming:
            continue
        days_until = (upcoming - today).days
        if days_until not in thresholds:
            continue
        key = f"indexing_reminder_{contract.id}_{upcoming.isoformat()}_{days_until}"
        message = (f"Indexare în {days_until} zile pentru contractul '{contract.name}' "
                   f"({upcoming.strftime('%d.%m.%Y')}).")
        if create_message(message, level='warning', related_url=f"/api/contracts/{contract.id}", dedupe_key=key):
            sent.append({'contract_id': contract.id, 'contract_name': contract.name,
                         'next_indexing': upcoming.isoformat(), 'days_until': days_until})
    current_app.logger.info(f"Recordatorios de indexación enviados: {len(sent)}")
    return sent


def check_indexing_reminders(app):
    with app.app_context():
        current_app.logger.info("Tarea Programada: Verificando indexaciones próximas...")
        try:
            run_indexing_reminders()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Error verificando indexaciones: {e}", exc_info=True)


# --- Contratos por vencer ---
def run_expiring_contracts_check(today=None):
    today = today or today_bucharest()
    limit = today + timedelta(days=current_app.config.get('EXPIRY_WARNING_DAYS', 90))
    warned = []
    for contract in active_contracts(today):
        end = contract.effective_end_date
        if end > limit:
            continue
        days_to_expiry = (end - today).days
        key = f"contract_expiry_{contract.id}_{end.isoformat()}"
        message = (f"Contractul '{contract.name}' expiră în {days_to_expiry} zile "
                   f"({end.strftime('%d.%m.%Y')}).")
        if create_message(message, level='warning', related_url=f"/api/contracts/{contract.id}", dedupe_key=key):
            warned.append({'contract_id': contract.id, 'contract_name': contract.name,
                           'end_date': end.isoformat(), 'days_to_expiry': days_to_expiry})
    current_app.logger.info(f"Contratos por vencer notificados: {len(warned)}")
    return warned


def check_expiring_contracts(app):
    with app.app_context():
        current_app.logger.info("Tarea Programada: Verificando contratos por vencer...")
        try:
            run_expiring_contracts_check()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Error verificando contratos por vencer: {e}", exc_info=True)
