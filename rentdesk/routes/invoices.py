# rentdesk/routes/invoices.py
from io import BytesIO

import xlsxwriter
from flask import Blueprint, jsonify, request, current_app, abort, send_file
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import MONTH_NAMES
from ..models import db, Contract, Invoice
from ..forms import InvoiceIssueForm, InvoiceSettingsForm, form_from_json, form_errors_response, json_payload
from ..utils.dates import parse_iso_date, today_bucharest
from ..utils.invoice_numbering import get_invoice_settings, save_invoice_settings
from ..utils.local_store import LocalStoreError
from ..utils.invoices import (
    compute_invoice_from_contract, issue_invoice, due_invoices_for_month, issue_due_invoices, invoices_for_month
)

invoices_bp = Blueprint('invoices_bp', __name__)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _year_month_args():
    today = today_bucharest()
    year = request.args.get('year', type=int) or today.year
    month = request.args.get('month', type=int) or today.month
    if not 1 <= month <= 12:
        abort(400, description=f"Mes inválido: {month}")
    return year, month


# --- Emisión ---
@invoices_bp.route('/invoices/issue', methods=['POST'])
def issue():
    form = form_from_json(InvoiceIssueForm)
    if not form.validate():
        return form_errors_response(form)
    contract = db.session.get(Contract, form.contract_id.data)
    if not contract:
        return jsonify({'error': 'Contrato inexistente.'}), 404
    try:
        invoice = compute_invoice_from_contract(
            contract, form.issued_at.data, number=form.number.data, amount_eur=form.amount_eur.data)
        saved = issue_invoice(invoice)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except IntegrityError as e:
        current_app.logger.warning(f"Número de factura duplicado: {e}")
        return jsonify({'error': 'Ya existe una factura con ese número.'}), 409
    except LocalStoreError as e:
        return jsonify({'error': f"Contador de facturas no disponible: {e}"}), 503
    except SQLAlchemyError as e:
        current_app.logger.error(f"Error emitiendo factura para contrato {contract.id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al emitir la factura.'}), 500
    return jsonify(saved.to_dict()), 201


@invoices_bp.route('/invoices/due', methods=['GET'])
def due():
    year, month = _year_month_args()
    try:
        items = due_invoices_for_month(year, month)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'year': year, 'month': month, 'month_name': MONTH_NAMES[month],
                    'due': [item.to_dict() for item in items]})


@invoices_bp.route('/invoices/issue-due', methods=['POST'])
def issue_due():
    payload = json_payload()
    today = today_bucharest()
    try:
        year = int(payload.get('year') or today.year)
        month = int(payload.get('month') or today.month)
        result = issue_due_invoices(year, month)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'year': year, 'month': month,
                    'issued': [inv.to_dict() for inv in result['issued']],
                    'errors': result['errors']})


# --- Consulta ---
@invoices_bp.route('/invoices', methods=['GET'])
def list_invoices():
    contract_id = request.args.get('contract_id', type=int)
    if request.args.get('year') or request.args.get('month'):
        year, month = _year_month_args()
        invoices = invoices_for_month(year, month)
        if contract_id:
            invoices = [inv for inv in invoices if inv.contract_id == contract_id]
    else:
        query = Invoice.query
        if contract_id:
            query = query.filter_by(contract_id=contract_id)
        invoices = query.order_by(Invoice.issued_at.desc(), Invoice.id.desc()).all()
    return jsonify([inv.to_dict() for inv in invoices])


@invoices_bp.route('/invoices/<int:id>', methods=['GET'])
def get_invoice(id):
    invoice = db.session.get(Invoice, id) or abort(404, description="Factura no encontrada.")
    return jsonify(invoice.to_dict())


@invoices_bp.route('/invoices/<int:id>', methods=['DELETE'])
def delete_invoice(id):
    invoice = db.session.get(Invoice, id) or abort(404, description="Factura no encontrada.")
    number = invoice.number
    try:
        db.session.delete(invoice)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error eliminando factura {id}: {e}", exc_info=True)
        return jsonify({'error': 'Error de base de datos al eliminar la factura.'}), 500
    # El número consumido no se reutiliza
    current_app.logger.info(f"Factura eliminada: {number}")
    return jsonify({'deleted': id, 'number': number})


# --- Exportación Excel ---
@invoices_bp.route('/invoices/export.xlsx', methods=['GET'])
def export_xlsx():
    try:
        start = parse_iso_date(request.args.get('start', ''))
        end = parse_iso_date(request.args.get('end', ''))
    except ValueError:
        return jsonify({'error': 'Parámetros start y end obligatorios (YYYY-MM-DD).'}), 400
    if start > end:
        return jsonify({'error': 'La fecha de inicio es posterior a la de fin.'}), 400

    invoices = (Invoice.query
                .filter(Invoice.issued_at >= start, Invoice.issued_at <= end)
                .order_by(Invoice.issued_at, Invoice.number).all())
    current_app.logger.info(f"Facturas Excel encontradas: {len(invoices)} ({start} - {end})")

    output = BytesIO()
    workbook = xlsxwriter.Workbook(output, {'in_memory': True})
    worksheet = workbook.add_worksheet('Facturi')

    header_format = workbook.add_format({
        'bold': True, 'bg_color': '#4472C4', 'font_color': 'white',
        'border': 1, 'align': 'center', 'valign': 'vcenter'
    })
    data_format = workbook.add_format({'border': 1, 'align': 'left', 'valign': 'vcenter'})
    number_format = workbook.add_format({'border': 1, 'align': 'right', 'valign': 'vcenter', 'num_format': '#,##0.00'})
    rate_format = workbook.add_format({'border': 1, 'align': 'right', 'valign': 'vcenter', 'num_format': '0.0000'})
    date_format = workbook.add_format({'border': 1, 'align': 'center', 'valign': 'vcenter', 'num_format': 'dd.mm.yyyy'})
    total_format = workbook.add_format({
        'bold': True, 'bg_color': '#D9E1F2', 'border': 1, 'align': 'right', 'num_format': '#,##0.00'
    })
    total_label_format = workbook.add_format({'bold': True, 'bg_color': '#D9E1F2', 'border': 1, 'align': 'center'})

    headers = ['Data', 'Număr', 'Contract', 'Proprietar', 'Partener', 'EUR', 'Corecție %',
               'EUR corectat', 'Curs', 'Net RON', 'TVA %', 'TVA RON', 'Total RON', 'Scadență']
    for col, header in enumerate(headers):
        worksheet.write(0, col, header, header_format)
    for col, width in enumerate([12, 18, 28, 24, 24, 12, 10, 12, 10, 14, 8, 12, 14, 12]):
        worksheet.set_column(col, col, width)

    for row, inv in enumerate(invoices, 1):
        worksheet.write_datetime(row, 0, inv.issued_at, date_format)
        worksheet.write(row, 1, inv.number, data_format)
        worksheet.write(row, 2, inv.contract_name or '', data_format)
        worksheet.write(row, 3, inv.owner_name or '', data_format)
        worksheet.write(row, 4, inv.partner_name or '', data_format)
        worksheet.write(row, 5, float(inv.amount_eur), number_format)
        worksheet.write(row, 6, float(inv.correction_percent or 0), number_format)
        worksheet.write(row, 7, float(inv.corrected_amount_eur), number_format)
        worksheet.write(row, 8, float(inv.exchange_rate_ron), rate_format)
        worksheet.write(row, 9, float(inv.net_ron), number_format)
        worksheet.write(row, 10, inv.tva_percent, data_format)
        worksheet.write(row, 11, float(inv.vat_ron), number_format)
        worksheet.write(row, 12, float(inv.total_ron), number_format)
        worksheet.write_datetime(row, 13, inv.due_date, date_format)

    if invoices:
        row = len(invoices) + 1
        worksheet.write(row, 4, 'TOTAL:', total_label_format)
        worksheet.write(row, 9, float(sum(inv.net_ron for inv in invoices)), total_format)
        worksheet.write(row, 11, float(sum(inv.vat_ron for inv in invoices)), total_format)
        worksheet.write(row, 12, float(sum(inv.total_ron for inv in invoices)), total_format)

    workbook.close()
    output.seek(0)
    filename = f"facturi_{start.isoformat()}_{end.isoformat()}.xlsx"
    current_app.logger.info(f"Excel generado: {filename}")
    return send_file(output, as_attachment=True, download_name=filename, mimetype=XLSX_MIMETYPE)


# --- Ajustes de numeración ---
@invoices_bp.route('/invoice-settings', methods=['GET'])
def invoice_settings():
    return jsonify(get_invoice_settings(request.args.get('owner_id'), request.args.get('owner_name')))


@invoices_bp.route('/invoice-settings', methods=['PUT'])
def update_invoice_settings():
    payload = json_payload()
    form = form_from_json(InvoiceSettingsForm, payload)
    if not form.validate():
        return form_errors_response(form)
    current = get_invoice_settings(form.owner_id.data or None, form.owner_name.data or None)
    # includeYear ausente = se conserva el valor guardado
    include_year = form.include_year.data if 'include_year' in payload else current['includeYear']
    try:
        saved = save_invoice_settings(
            form.owner_id.data or None, form.owner_name.data or None,
            series=form.series.data, next_number=form.next_number.data,
            pad_width=form.pad_width.data, include_year=include_year,
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except LocalStoreError as e:
        return jsonify({'error': str(e)}), 503
    return jsonify(saved)
