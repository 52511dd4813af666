# rentdesk/utils/notifications.py
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import db
from ..models import Notification, NOTIFICATION_LEVELS


def create_message(text, level='info', related_url=None, dedupe_key=None):
    """Crea un mensaje interno. Con dedupe_key no se repite el mismo aviso.

    Devuelve la notificación creada, o None si ya existía o no se pudo guardar.
    """
    text = (text or '').strip()
    if not text:
        raise ValueError("El mensaje no puede estar vacío.")
    if level not in NOTIFICATION_LEVELS:
        level = 'info'
    if dedupe_key and Notification.query.filter_by(dedupe_key=dedupe_key).first():
        return None
    notif = Notification(message=text, level=level, related_url=related_url, dedupe_key=dedupe_key)
    db.session.add(notif)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error guardando mensaje '{text[:60]}': {e}", exc_info=True)
        return None
    current_app.logger.info(f"Mensaje creado [{level}]: {text}")
    return notif


def list_messages(limit=50, unread_only=False):
    query = Notification.query
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.timestamp.desc(), Notification.id.desc()).limit(limit).all()
