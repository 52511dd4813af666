# rentdesk/routes/main.py
from flask import Blueprint, jsonify, current_app
from sqlalchemy import func, text, extract
from sqlalchemy.exc import SQLAlchemyError

from .. import __version__
from ..models import db, Owner, Partner, Asset, Contract, Invoice, Notification
from ..utils.contracts import active_contracts
from ..utils.dates import today_bucharest
from ..utils.formatting import decimal_or_none

main_bp = Blueprint('main_bp', __name__)


@main_bp.route('/health', methods=['GET'])
def health():
    db_ok = True
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        db.session.rollback()
        db_ok = False
        current_app.logger.error(f"Health check: base de datos no disponible: {e}")
    return jsonify({
        'status': 'ok' if db_ok else 'degraded',
        'database': db_ok,
        'storage': current_app.config.get('STORAGE_BACKEND'),
        'version': __version__,
    }), 200 if db_ok else 503


@main_bp.route('/version', methods=['GET'])
def version():
    return jsonify({'version': __version__})


@main_bp.route('/stats', methods=['GET'])
def stats():
    today = today_bucharest()
    try:
        month_totals = db.session.query(
            func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_ron), 0),
            func.coalesce(func.sum(Invoice.corrected_amount_eur), 0),
        ).filter(
            extract('year', Invoice.issued_at) == today.year,
            extract('month', Invoice.issued_at) == today.month,
        ).one()
        data = {
            'owners': Owner.query.count(),
            'partners': Partner.query.count(),
            'assets': Asset.query.count(),
            'contracts': Contract.query.count(),
            'active_contracts': len(active_contracts(today)),
            'unread_messages': Notification.query.filter_by(is_read=False).count(),
            'month': f"{today.year:04d}-{today.month:02d}",
            'month_invoices': month_totals[0],
            'month_total_ron': decimal_or_none(month_totals[1]),
            'month_total_eur': decimal_or_none(month_totals[2]),
        }
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error calculando estadísticas: {e}", exc_info=True)
        return jsonify({'error': 'No se pudieron calcular las estadísticas.'}), 500
    return jsonify(data)
