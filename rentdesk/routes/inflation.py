# rentdesk/routes/inflation.py
from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..forms import HicpFallbackForm, form_from_json, form_errors_response
from ..utils.dates import is_month_key, month_key
from ..utils.inflation import (
    get_euro_inflation_percent, get_hicp_index, read_hicp_fallback, upsert_hicp_fallback, delete_hicp_fallback
)

inflation_bp = Blueprint('inflation_bp', __name__)


def _wants_refresh():
    return request.args.get('refresh') in ('1', 'true', 'yes')


@inflation_bp.route('/percent', methods=['GET'])
def inflation_percent():
    from_month = request.args.get('from', '')
    to_month = request.args.get('to') or None
    try:
        from_month = month_key(from_month)
        to_month = month_key(to_month) if to_month else None
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    try:
        result = get_euro_inflation_percent(from_month, to_month, force_refresh=_wants_refresh())
    except SQLAlchemyError as e:
        current_app.logger.error(f"Error calculando inflación: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos.'}), 500
    if result is None:
        return jsonify({'error': 'Serie HICP no disponible.'}), 424
    return jsonify(result)


@inflation_bp.route('/index/<string:month>', methods=['GET'])
def hicp_index(month):
    if not is_month_key(month):
        return jsonify({'error': 'Formato de mes inválido (YYYY-MM).'}), 400
    value = get_hicp_index(month, force_refresh=_wants_refresh())
    if value is None:
        return jsonify({'error': f'Índice HICP no disponible para {month}.'}), 424
    return jsonify({'month': month, 'index': value})


@inflation_bp.route('/fallback', methods=['GET'])
def fallback_list():
    return jsonify(read_hicp_fallback())


@inflation_bp.route('/fallback', methods=['PUT'])
def fallback_upsert():
    form = form_from_json(HicpFallbackForm)
    if not form.validate():
        return form_errors_response(form)
    try:
        values = upsert_hicp_fallback(form.month.data, form.index.data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except OSError as e:
        current_app.logger.error(f"No se pudo escribir el fichero HICP manual: {e}", exc_info=True)
        return jsonify({'error': 'No se pudo guardar el índice manual.'}), 500
    current_app.logger.info(f"Índice HICP manual guardado: {form.month.data} = {form.index.data}")
    return jsonify(values)


@inflation_bp.route('/fallback/<string:month>', methods=['DELETE'])
def fallback_delete(month):
    try:
        values = delete_hicp_fallback(month)
    except OSError as e:
        current_app.logger.error(f"No se pudo escribir el fichero HICP manual: {e}", exc_info=True)
        return jsonify({'error': 'No se pudo eliminar el índice manual.'}), 500
    return jsonify(values)
