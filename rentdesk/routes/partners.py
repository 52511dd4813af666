# rentdesk/routes/partners.py
from flask import Blueprint, jsonify, current_app, abort
from sqlalchemy.exc import SQLAlchemyError

from ..models import db, Partner, ContractPartner
from ..forms import PartnerForm, form_from_json, form_errors_response, json_payload

partners_bp = Blueprint('partners_bp', __name__)


def _fill_partner(partner, form):
    partner.name = form.name.data.strip()
    partner.vat_number = form.vat_number.data or None
    partner.orc_number = form.orc_number.data or None
    partner.headquarters = form.headquarters.data or None
    partner.phone = form.phone.data or None
    partner.email = (form.email.data or '').lower() or None


@partners_bp.route('/', methods=['GET'], strict_slashes=False)
def list_partners():
    return jsonify([p.to_dict() for p in Partner.query.order_by(Partner.name).all()])


@partners_bp.route('/<int:id>', methods=['GET'])
def get_partner(id):
    partner = db.session.get(Partner, id) or abort(404, description="Socio no encontrado.")
    data = partner.to_dict()
    data['contracts'] = [c.to_dict(detail=False) for c in partner.contracts]
    return jsonify(data)


@partners_bp.route('/', methods=['POST'], strict_slashes=False)
def create_partner():
    form = form_from_json(PartnerForm)
    if not form.validate():
        return form_errors_response(form)
    partner = Partner()
    _fill_partner(partner, form)
    db.session.add(partner)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error creando socio: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al crear el socio.'}), 500
    current_app.logger.info(f"Socio creado: {partner.id} {partner.name}")
    return jsonify(partner.to_dict()), 201


@partners_bp.route('/<int:id>', methods=['PUT'])
def update_partner(id):
    partner = db.session.get(Partner, id) or abort(404, description="Socio no encontrado.")
    # Los campos que no se envían conservan su valor actual
    form = form_from_json(PartnerForm, {**partner.to_dict(), **json_payload()})
    if not form.validate():
        return form_errors_response(form)
    _fill_partner(partner, form)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error actualizando socio {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al actualizar el socio.'}), 500
    return jsonify(partner.to_dict())


@partners_bp.route('/<int:id>', methods=['DELETE'])
def delete_partner(id):
    partner = db.session.get(Partner, id) or abort(404, description="Socio no encontrado.")
    shared = ContractPartner.query.filter_by(partner_id=id).count()
    if partner.contracts or shared:
        return jsonify({'error': f"No se puede eliminar '{partner.name}': tiene contratos asociados."}), 409
    try:
        db.session.delete(partner)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error eliminando socio {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al eliminar el socio.'}), 500
    return jsonify({'deleted': id})
