# rentdesk/routes/cron.py
from flask import Blueprint, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models import db
from ..decorators import cron_secret_required
from ..tasks import run_exchange_refresh, run_indexing_reminders, run_expiring_contracts_check

cron_bp = Blueprint('cron_bp', __name__)


@cron_bp.route('/exchange-refresh', methods=['GET'])
@cron_secret_required
def exchange_refresh():
    try:
        rates = run_exchange_refresh()
    except (RuntimeError, SQLAlchemyError) as e:
        db.session.rollback()
        current_app.logger.error(f"Cron exchange-refresh falló: {e}", exc_info=True)
        return jsonify({'ok': False, 'error': str(e)}), 500
    return jsonify({'ok': True, **rates})


@cron_bp.route('/indexing-reminders', methods=['GET'])
@cron_secret_required
def indexing_reminders():
    try:
        reminders = run_indexing_reminders()
        expiring = run_expiring_contracts_check()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Cron indexing-reminders falló: {e}", exc_info=True)
        return jsonify({'ok': False, 'error': 'Error de base de datos.'}), 500
    return jsonify({'ok': True, 'reminders': reminders, 'expiring': expiring})
