# rentdesk/routes/messages.py
from flask import Blueprint, jsonify, request, current_app, abort
from sqlalchemy.exc import SQLAlchemyError

from ..models import db, Notification
from ..forms import MessageForm, form_from_json, form_errors_response
from ..utils.notifications import create_message, list_messages

messages_bp = Blueprint('messages_bp', __name__)


@messages_bp.route('/', methods=['GET'], strict_slashes=False)
def messages():
    limit = min(request.args.get('limit', 50, type=int), 500)
    unread_only = request.args.get('unread') in ('1', 'true')
    return jsonify([n.to_dict() for n in list_messages(limit, unread_only)])


@messages_bp.route('/', methods=['POST'], strict_slashes=False)
def post_message():
    form = form_from_json(MessageForm)
    if not form.validate():
        return form_errors_response(form)
    notif = create_message(form.text.data, level=form.level.data, related_url=form.related_url.data or None)
    if notif is None:
        return jsonify({'error': 'No se pudo guardar el mensaje.'}), 500
    return jsonify(notif.to_dict()), 201


@messages_bp.route('/<int:id>/read', methods=['POST'])
def mark_read(id):
    notif = db.session.get(Notification, id) or abort(404, description="Mensaje no encontrado.")
    notif.is_read = True
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error marcando mensaje {id} como leído: {e}")
        return jsonify({'error': 'Error de base de datos.'}), 500
    return jsonify(notif.to_dict())


@messages_bp.route('/<int:id>', methods=['DELETE'])
def delete_message(id):
    notif = db.session.get(Notification, id) or abort(404, description="Mensaje no encontrado.")
    try:
        db.session.delete(notif)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error eliminando mensaje {id}: {e}")
        return jsonify({'error': 'Error de base de datos.'}), 500
    return jsonify({'deleted': id})
