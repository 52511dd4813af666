# rentdesk/decorators.py
import hmac
from functools import wraps
from flask import request, jsonify, current_app


def _presented_secret():
    auth = request.headers.get('Authorization', '')
    if auth.lower().startswith('bearer '):
        return auth[7:].strip()
    return request.headers.get('X-Cron-Secret') or request.args.get('secret') or ''


def cron_secret_required(f):
    """Protege los endpoints de cron con CRON_SECRET (si está configurado)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get('CRON_SECRET')
        if secret and not hmac.compare_digest(_presented_secret(), secret):
            current_app.logger.warning(f"Acceso a cron denegado desde {request.remote_addr} ({request.path})")
            return jsonify({'error': 'No autorizado.'}), 401
        return f(*args, **kwargs)
    return decorated_function

