# rentdesk/routes/deposits.py
from decimal import Decimal

from flask import Blueprint, jsonify, request, current_app, abort
from sqlalchemy.exc import SQLAlchemyError

from ..models import db, Contract, Deposit
from ..forms import DepositForm, form_from_json, form_errors_response, json_payload
from ..utils.formatting import decimal_or_none

deposits_bp = Blueprint('deposits_bp', __name__)


def _fill_deposit(deposit, form):
    deposit.type = form.type.data
    deposit.is_deposited = form.is_deposited.data
    deposit.returned = form.returned.data
    deposit.amount_eur = form.amount_eur.data
    deposit.amount_ron = form.amount_ron.data
    deposit.note = form.note.data or None


def _commit(action, id=None):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error al {action} depósito {id or ''}: {e}", exc_info=True)
        return jsonify({'error': f'Error de base de datos al {action} el depósito.'}), 500
    return None


@deposits_bp.route('/contracts/<int:contract_id>/deposits', methods=['GET'])
def list_deposits(contract_id):
    contract = db.session.get(Contract, contract_id) or abort(404, description="Contrato no encontrado.")
    deposits = sorted(contract.deposits, key=lambda d: d.created_at or d.id)
    return jsonify([d.to_dict() for d in deposits])


@deposits_bp.route('/contracts/<int:contract_id>/deposits', methods=['POST'])
def create_deposit(contract_id):
    contract = db.session.get(Contract, contract_id) or abort(404, description="Contrato no encontrado.")
    form = form_from_json(DepositForm)
    if not form.validate():
        return form_errors_response(form)
    deposit = Deposit(contract_id=contract.id)
    _fill_deposit(deposit, form)
    db.session.add(deposit)
    error = _commit('crear')
    if error:
        return error
    current_app.logger.info(f"Depósito {deposit.id} ({deposit.type}) creado para contrato {contract.id}")
    return jsonify(deposit.to_dict()), 201


@deposits_bp.route('/deposits/<int:id>', methods=['PUT'])
def update_deposit(id):
    deposit = db.session.get(Deposit, id) or abort(404, description="Depósito no encontrado.")
    form = form_from_json(DepositForm)
    if not form.validate():
        return form_errors_response(form)
    _fill_deposit(deposit, form)
    error = _commit('actualizar', id)
    if error:
        return error
    return jsonify(deposit.to_dict())


@deposits_bp.route('/deposits/<int:id>', methods=['DELETE'])
def delete_deposit(id):
    deposit = db.session.get(Deposit, id) or abort(404, description="Depósito no encontrado.")
    db.session.delete(deposit)
    error = _commit('eliminar', id)
    if error:
        return error
    return jsonify({'deleted': id})


@deposits_bp.route('/deposits/<int:id>/toggle', methods=['POST'])
def toggle_deposit(id):
    deposit = db.session.get(Deposit, id) or abort(404, description="Depósito no encontrado.")
    value = json_payload().get('value')
    deposit.is_deposited = bool(value) if isinstance(value, bool) else not deposit.is_deposited
    error = _commit('actualizar', id)
    if error:
        return error
    return jsonify(deposit.to_dict())


@deposits_bp.route('/deposits/summary', methods=['GET'])
def deposits_summary():
    contract_id = request.args.get('contract_id', type=int)
    asset_id = request.args.get('asset_id', type=int)
    if not contract_id and not asset_id:
        return jsonify({'error': 'Se requiere contract_id o asset_id.'}), 400

    query = Deposit.query
    if contract_id:
        query = query.filter(Deposit.contract_id == contract_id)
    if asset_id:
        query = query.join(Contract, Deposit.contract_id == Contract.id).filter(Contract.asset_id == asset_id)
    rows = query.all()

    def _sum(items, attr):
        return sum((getattr(d, attr) or Decimal('0') for d in items), Decimal('0'))

    deposited = [d for d in rows if d.is_deposited]
    pending = [d for d in rows if not d.is_deposited]
    return jsonify({
        'total': len(rows),
        'deposited': len(deposited),
        'sum_deposited_eur': decimal_or_none(_sum(deposited, 'amount_eur')),
        'sum_pending_eur': decimal_or_none(_sum(pending, 'amount_eur')),
        'sum_deposited_ron': decimal_or_none(_sum(deposited, 'amount_ron')),
        'sum_pending_ron': decimal_or_none(_sum(pending, 'amount_ron')),
    })
