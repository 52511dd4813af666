# rentdesk/routes/owners.py
from flask import Blueprint, jsonify, current_app, abort
from sqlalchemy.exc import SQLAlchemyError

from ..models import db, Owner
from ..forms import OwnerForm, form_from_json, form_errors_response, json_payload

owners_bp = Blueprint('owners_bp', __name__)


def _clean_list(values):
    return [v.strip() for v in values if v and v.strip()]


def _fill_owner(owner, form):
    owner.name = form.name.data.strip()
    owner.vat_number = form.vat_number.data or None
    owner.orc_number = form.orc_number.data or None
    owner.headquarters = form.headquarters.data or None
    owner.administrators = _clean_list(form.administrators.data)
    owner.bank_account = form.bank_account.data or None
    owner.emails = [e.lower() for e in _clean_list(form.emails.data)]
    owner.phone_numbers = _clean_list(form.phone_numbers.data)


@owners_bp.route('/', methods=['GET'], strict_slashes=False)
def list_owners():
    owners = Owner.query.order_by(Owner.name).all()
    return jsonify([o.to_dict() for o in owners])


@owners_bp.route('/<int:id>', methods=['GET'])
def get_owner(id):
    owner = db.session.get(Owner, id) or abort(404, description="Propietario no encontrado.")
    return jsonify(owner.to_dict())


@owners_bp.route('/', methods=['POST'], strict_slashes=False)
def create_owner():
    form = form_from_json(OwnerForm)
    if not form.validate():
        return form_errors_response(form)
    owner = Owner()
    _fill_owner(owner, form)
    db.session.add(owner)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error creando propietario: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al crear el propietario.'}), 500
    current_app.logger.info(f"Propietario creado: {owner.id} {owner.name}")
    return jsonify(owner.to_dict()), 201


@owners_bp.route('/<int:id>', methods=['PUT'])
def update_owner(id):
    owner = db.session.get(Owner, id) or abort(404, description="Propietario no encontrado.")
    # Los campos que no se envían conservan su valor actual
    form = form_from_json(OwnerForm, {**owner.to_dict(), **json_payload()})
    if not form.validate():
        return form_errors_response(form)
    _fill_owner(owner, form)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error actualizando propietario {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al actualizar el propietario.'}), 500
    return jsonify(owner.to_dict())


@owners_bp.route('/<int:id>', methods=['DELETE'])
def delete_owner(id):
    owner = db.session.get(Owner, id) or abort(404, description="Propietario no encontrado.")
    if owner.assets or owner.contracts:
        return jsonify({'error': f"No se puede eliminar '{owner.name}': tiene inmuebles o contratos asociados."}), 409
    try:
        db.session.delete(owner)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error eliminando propietario {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al eliminar el propietario.'}), 500
    current_app.logger.info(f"Propietario eliminado: {id}")
    return jsonify({'deleted': id})
