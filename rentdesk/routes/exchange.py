# rentdesk/routes/exchange.py
from flask import Blueprint, jsonify, request, current_app

from ..utils.exchange import SOURCES, get_rate, latest_rate

exchange_bp = Blueprint('exchange_bp', __name__)


def _wants_refresh():
    return request.args.get('refresh') in ('1', 'true', 'yes')


@exchange_bp.route('/exchange/<string:source>', methods=['GET'])
def exchange_rate(source):
    if source not in SOURCES:
        return jsonify({'error': f"Fuente desconocida: {source}. Disponibles: {', '.join(SOURCES)}"}), 404
    try:
        result = get_rate(source, force_refresh=_wants_refresh())
    except RuntimeError as e:
        current_app.logger.error(f"Curso {source} no resuelto: {e}")
        return jsonify({'error': str(e)}), 500
    return jsonify(result.to_dict())


@exchange_bp.route('/exchange/refresh', methods=['POST'])
def refresh_all():
    results = {}
    for name in SOURCES:
        try:
            results[name] = get_rate(name, force_refresh=True).to_dict()
        except RuntimeError as e:
            current_app.logger.error(f"Curso {name} no resuelto: {e}")
            results[name] = {'error': str(e)}
    return jsonify(results)


@exchange_bp.route('/rates', methods=['GET'])
def rates():
    data = {}
    for name in ('bnr', 'bt'):
        try:
            data[name] = get_rate(name, force_refresh=_wants_refresh()).to_dict()
        except RuntimeError as e:
            data[name] = {'error': str(e)}
    return jsonify(data)


@exchange_bp.route('/exchange/<string:source>/latest', methods=['GET'])
def latest(source):
    if source not in SOURCES:
        return jsonify({'error': f"Fuente desconocida: {source}"}), 404
    record = latest_rate(source)
    if not record:
        return jsonify({'error': 'Sin cursos guardados para esta fuente.'}), 404
    return jsonify(record.to_dict())
