# rentdesk/routes/contracts.py
from datetime import datetime

from flask import Blueprint, jsonify, request, current_app, abort
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..models import (
    db, Contract, ContractExtension, IrregularInvoice, ContractPartner, IndexingDate, Owner, Partner
)
from ..forms import (
    ContractForm, ExchangeRateApplyForm, IndexingApplyForm, InflationPeriodForm,
    form_from_json, form_errors_response, json_payload
)
from ..utils.contracts import (
    sync_indexing_dates, update_contracts_exchange_rate, apply_indexing, next_indexing_date, rent_amount_at
)
from ..utils.dates import month_key, today_bucharest
from ..utils.exchange import latest_rate
from ..utils.formatting import decimal_or_none
from ..utils.inflation import get_euro_inflation_percent, get_hicp_index
from ..utils.notifications import create_message

contracts_bp = Blueprint('contracts_bp', __name__)


def _get_contract(id):
    return db.session.get(Contract, id) or abort(404, description="Contrato no encontrado.")


def _contract_detail(contract):
    data = contract.to_dict()
    today = today_bucharest()
    upcoming = next_indexing_date(contract, today)
    data['next_indexing_date'] = upcoming.isoformat() if upcoming else None
    data['current_rent_eur'] = decimal_or_none(rent_amount_at(contract, today))
    data['is_active'] = contract.is_active(today)
    return data


def _fill_contract(contract, form):
    contract.name = form.name.data.strip()
    contract.asset_id = form.asset_id.data
    contract.owner_id = form.owner_id.data
    contract.owner_name = form.owner_name.data or None
    if contract.owner_id and not contract.owner_name:
        contract.owner_name = db.session.get(Owner, contract.owner_id).name
    contract.partner_id = form.partner_id.data
    contract.partner_name = form.partner_name.data or None
    if contract.partner_id and not contract.partner_name:
        contract.partner_name = db.session.get(Partner, contract.partner_id).name
    contract.signed_at = form.signed_at.data
    contract.start_date = form.start_date.data
    contract.end_date = form.end_date.data
    contract.payment_due_days = form.payment_due_days.data or 0
    contract.indexing_day = form.indexing_day.data
    contract.indexing_month = form.indexing_month.data
    contract.how_often_is_indexing = form.how_often_is_indexing.data
    contract.rent_type = form.rent_type.data
    contract.invoice_month_mode = form.invoice_month_mode.data
    contract.monthly_invoice_day = form.monthly_invoice_day.data
    contract.rent_amount_eur = form.rent_amount_eur.data
    contract.exchange_rate_ron = form.exchange_rate_ron.data
    contract.tva_percent = form.tva_percent.data or 0
    contract.correction_percent = form.correction_percent.data or 0
    contract.notes = form.notes.data or None

    contract.extensions = [
        ContractExtension(doc_date=e.form.doc_date.data, document=e.form.document.data or None,
                          extended_until=e.form.extended_until.data)
        for e in form.extensions.entries
    ]
    contract.irregular_invoices = [
        IrregularInvoice(month=e.form.month.data, day=e.form.day.data, amount_eur=e.form.amount_eur.data)
        for e in form.irregular_invoices.entries
    ]
    contract.partner_shares = [
        ContractPartner(partner_id=e.form.partner_id.data, name=e.form.name.data.strip(),
                        share_percent=e.form.share_percent.data)
        for e in form.partners.entries
    ]
    sync_indexing_dates(contract)


def _save(contract, action):
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        current_app.logger.warning(f"Conflicto al {action} contrato: {e}")
        return jsonify({'error': 'Conflicto de datos (nombre o fecha de indexación duplicados).'}), 409
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error al {action} contrato: {e}", exc_info=True)
        return jsonify({'error': f'Error de base de datos al {action} el contrato.'}), 500
    return None


# --- CRUD ---
@contracts_bp.route('/', methods=['GET'], strict_slashes=False)
def list_contracts():
    query = Contract.query
    asset_id = request.args.get('asset_id', type=int)
    if asset_id:
        query = query.filter_by(asset_id=asset_id)
    partner_id = request.args.get('partner_id', type=int)
    if partner_id:
        query = query.filter_by(partner_id=partner_id)
    contracts = query.order_by(Contract.name).all()
    if request.args.get('active') in ('1', 'true'):
        today = today_bucharest()
        contracts = [c for c in contracts if c.effective_end_date >= today]
    return jsonify([c.to_dict(detail=False) for c in contracts])


@contracts_bp.route('/<int:id>', methods=['GET'])
def get_contract(id):
    return jsonify(_contract_detail(_get_contract(id)))


@contracts_bp.route('/', methods=['POST'], strict_slashes=False)
def create_contract():
    form = form_from_json(ContractForm)
    if not form.validate():
        return form_errors_response(form)
    contract = Contract()
    _fill_contract(contract, form)
    db.session.add(contract)
    error = _save(contract, 'crear')
    if error:
        return error
    current_app.logger.info(f"Contrato creado: {contract.id} '{contract.name}' ({len(contract.indexing_dates)} indexaciones previstas)")
    return jsonify(_contract_detail(contract)), 201


@contracts_bp.route('/<int:id>', methods=['PUT'])
def update_contract(id):
    contract = _get_contract(id)
    body = json_payload()
    stored = contract.to_dict(detail=True)
    # Si cambia el propietario o el socio sin nombre explícito, el nombre se toma del nuevo id
    for party in ('owner', 'partner'):
        if f'{party}_id' in body and f'{party}_name' not in body:
            stored.pop(f'{party}_name', None)
    # Los campos que no se envían conservan su valor actual
    payload = {**stored, **body}
    form = form_from_json(ContractForm, payload, original_obj=contract)
    if not form.validate():
        return form_errors_response(form)
    _fill_contract(contract, form)
    error = _save(contract, 'actualizar')
    if error:
        return error
    current_app.logger.info(f"Contrato actualizado: {contract.id} '{contract.name}'")
    return jsonify(_contract_detail(contract))


@contracts_bp.route('/<int:id>', methods=['DELETE'])
def delete_contract(id):
    contract = _get_contract(id)
    if contract.invoices:
        return jsonify({'error': f"No se puede eliminar '{contract.name}': tiene {len(contract.invoices)} facturas emitidas."}), 409
    try:
        db.session.delete(contract)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error eliminando contrato {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al eliminar el contrato.'}), 500
    current_app.logger.info(f"Contrato eliminado: {id}")
    return jsonify({'deleted': id})


# --- Curso de cambio ---
@contracts_bp.route('/apply-exchange-rate', methods=['POST'])
def apply_exchange_rate():
    payload = json_payload()
    form = form_from_json(ExchangeRateApplyForm, payload)
    if not form.validate():
        return form_errors_response(form)
    rate = form.rate.data
    source = 'manual'
    if rate is None:
        record = latest_rate('bnr')
        if not record:
            return jsonify({'error': 'No hay ningún curso BNR guardado todavía.'}), 424
        rate, source = record.rate, f"bnr {record.date.isoformat()}"
    try:
        updated = update_contracts_exchange_rate(rate, only_active=payload.get('only_active', True) is not False)
    except SQLAlchemyError:
        current_app.logger.error("Error aplicando el curso a los contratos", exc_info=True)
        return jsonify({'error': 'Error de base de datos al aplicar el curso.'}), 500
    return jsonify({'rate': float(rate), 'source': source, 'updated': updated})


# --- Indexación ---
@contracts_bp.route('/<int:id>/indexing', methods=['GET'])
def list_indexing(id):
    contract = _get_contract(id)
    upcoming = next_indexing_date(contract)
    return jsonify({
        'next_indexing_date': upcoming.isoformat() if upcoming else None,
        'entries': [entry.to_dict() for entry in contract.indexing_dates],
    })


@contracts_bp.route('/<int:id>/indexing/<int:entry_id>/apply', methods=['POST'])
def apply_indexing_entry(id, entry_id):
    contract = _get_contract(id)
    entry = db.session.get(IndexingDate, entry_id)
    if not entry or entry.contract_id != contract.id:
        abort(404, description="Indexación no encontrada para este contrato.")
    if entry.done:
        return jsonify({'error': 'Esta indexación ya está aplicada.'}), 409

    form = form_from_json(IndexingApplyForm)
    if not form.validate():
        return form_errors_response(form)

    percent = form.percent.data
    period = None
    if percent is None:
        period = get_euro_inflation_percent(form.from_month.data, form.to_month.data or month_key(entry.forecast_date))
        if period is None:
            return jsonify({'error': 'Índice HICP no disponible para los meses solicitados.'}), 424
        percent = period['percent']

    try:
        new_amount = apply_indexing(contract, entry, percent, form.actual_date.data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if form.document.data:
        entry.document = form.document.data
    error = _save(contract, 'indexar')
    if error:
        return error

    create_message(
        f"Indexare aplicată contractului '{contract.name}': {percent:.2f}% -> {new_amount:.2f} EUR",
        level='info', related_url=f"/api/contracts/{contract.id}",
    )
    return jsonify({'entry': entry.to_dict(), 'percent': percent, 'period': period,
                    'new_rent_amount': decimal_or_none(new_amount)})


@contracts_bp.route('/<int:id>/verify-inflation', methods=['POST'])
def verify_inflation(id):
    contract = _get_contract(id)
    form = form_from_json(InflationPeriodForm)
    if not form.validate():
        return form_errors_response(form)
    from_month = form.from_month.data
    to_month = form.to_month.data or month_key(today_bucharest())

    start_index = get_hicp_index(from_month)
    end_index = get_hicp_index(to_month)
    if start_index is None or end_index is None:
        return jsonify({'error': 'Índice HICP no disponible para los meses solicitados.'}), 424
    percent = (end_index / start_index - 1) * 100

    contract.inflation_percent = percent
    contract.inflation_from_month = from_month
    contract.inflation_to_month = to_month
    contract.inflation_verified_at = datetime.utcnow()
    error = _save(contract, 'verificar')
    if error:
        return error
    return jsonify({'percent': percent, 'from_month': from_month, 'to_month': to_month,
                    'from_index': start_index, 'to_index': end_index, 'saved': True})
