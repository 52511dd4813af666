# rentdesk/routes/assets.py
from flask import Blueprint, jsonify, current_app, abort, request
from sqlalchemy.exc import SQLAlchemyError

from ..models import db, Asset
from ..forms import AssetForm, form_from_json, form_errors_response, json_payload

assets_bp = Blueprint('assets_bp', __name__)


def _fill_asset(asset, form):
    asset.name = form.name.data.strip()
    asset.address = form.address.data or None
    asset.area_sqm = form.area_sqm.data
    asset.owner_id = form.owner_id.data


@assets_bp.route('/', methods=['GET'], strict_slashes=False)
def list_assets():
    query = Asset.query
    owner_id = request.args.get('owner_id', type=int)
    if owner_id:
        query = query.filter_by(owner_id=owner_id)
    return jsonify([a.to_dict() for a in query.order_by(Asset.name).all()])


@assets_bp.route('/<int:id>', methods=['GET'])
def get_asset(id):
    asset = db.session.get(Asset, id) or abort(404, description="Inmueble no encontrado.")
    data = asset.to_dict()
    data['contracts'] = [c.to_dict(detail=False) for c in asset.contracts]
    return jsonify(data)


@assets_bp.route('/', methods=['POST'], strict_slashes=False)
def create_asset():
    form = form_from_json(AssetForm)
    if not form.validate():
        return form_errors_response(form)
    asset = Asset()
    _fill_asset(asset, form)
    db.session.add(asset)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error creando inmueble: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al crear el inmueble.'}), 500
    current_app.logger.info(f"Inmueble creado: {asset.id} {asset.name}")
    return jsonify(asset.to_dict()), 201


@assets_bp.route('/<int:id>', methods=['PUT'])
def update_asset(id):
    asset = db.session.get(Asset, id) or abort(404, description="Inmueble no encontrado.")
    # Los campos que no se envían conservan su valor actual
    form = form_from_json(AssetForm, {**asset.to_dict(), **json_payload()})
    if not form.validate():
        return form_errors_response(form)
    _fill_asset(asset, form)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error actualizando inmueble {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al actualizar el inmueble.'}), 500
    return jsonify(asset.to_dict())


@assets_bp.route('/<int:id>', methods=['DELETE'])
def delete_asset(id):
    asset = db.session.get(Asset, id) or abort(404, description="Inmueble no encontrado.")
    if asset.contracts:
        return jsonify({'error': f"No se puede eliminar '{asset.name}': tiene contratos asociados."}), 409
    try:
        db.session.delete(asset)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error eliminando inmueble {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al eliminar el inmueble.'}), 500
    return jsonify({'deleted': id})
