# rentdesk/forms.py
from flask import jsonify, request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import (
    Form, StringField, BooleanField, SelectField, TextAreaField, IntegerField,
    DecimalField, FloatField, DateField, FieldList, FormField
)
from wtforms.validators import DataRequired, InputRequired, Length, Email, Optional, NumberRange, ValidationError, Regexp
from . import db
from .models import Owner, Partner, Asset, Contract, RENT_TYPES, INVOICE_MONTH_MODES, DEPOSIT_TYPES, NOTIFICATION_LEVELS

MONTH_KEY_PATTERN = r'^\d{4}-(0[1-9]|1[0-2])$'


# --- JSON -> formdata ---
def formdata_from_json(payload, prefix=''):
    """Aplana un cuerpo JSON con la convención de nombres de WTForms.

    {'a': {'b': 1}} -> a-b ; {'a': [x, y]} -> a-0, a-1 ; {'a': [{'b': 1}]} -> a-0-b.
    True -> 'y'; False y None no se envían (como una casilla sin marcar).
    """
    items = []

    def _walk(value, name):
        if isinstance(value, dict):
            for key, sub in value.items():
                _walk(sub, f"{name}-{key}" if name else str(key))
        elif isinstance(value, (list, tuple)):
            for i, sub in enumerate(value):
                _walk(sub, f"{name}-{i}")
        elif value is True:
            items.append((name, 'y'))
        elif value is False or value is None:
            return
        else:
            items.append((name, str(value)))

    _walk(payload or {}, prefix)
    return MultiDict(items)


def json_payload():
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def form_from_json(form_class, payload=None, **kwargs):
    payload = json_payload() if payload is None else payload
    return form_class(formdata=formdata_from_json(payload), **kwargs)


def form_errors_response(form):
    return jsonify({'error': 'Datos inválidos.', 'fields': form.errors}), 400


class JsonForm(FlaskForm):
    """Formulario alimentado desde JSON: sin token CSRF (API)."""
    class Meta:
        csrf = False


def _exists(model, pk):
    return pk is None or db.session.get(model, pk) is not None


# --- PROPIETARIOS / SOCIOS / INMUEBLES ---
class OwnerForm(JsonForm):
    name = StringField('Nombre', validators=[DataRequired(), Length(max=150)])
    vat_number = StringField('CUI', validators=[Optional(), Length(max=30)])
    orc_number = StringField('Nr. ORC', validators=[Optional(), Length(max=40)])
    headquarters = StringField('Sede', validators=[Optional(), Length(max=255)])
    administrators = FieldList(StringField('Administrador', validators=[Optional(), Length(max=150)]))
    bank_account = StringField('IBAN', validators=[Optional(), Length(max=50)])
    emails = FieldList(StringField('Email', validators=[Optional(), Email(message="Formato de email inválido."), Length(max=120)]))
    phone_numbers = FieldList(StringField('Teléfono', validators=[Optional(), Length(max=30)]))


class PartnerForm(JsonForm):
    name = StringField('Nombre', validators=[DataRequired(), Length(max=150)])
    vat_number = StringField('CUI', validators=[Optional(), Length(max=30)])
    orc_number = StringField('Nr. ORC', validators=[Optional(), Length(max=40)])
    headquarters = StringField('Sede', validators=[Optional(), Length(max=255)])
    phone = StringField('Teléfono', validators=[Optional(), Length(max=30)])
    email = StringField('Email', validators=[Optional(), Email(message="Formato de email inválido."), Length(max=120)])


class AssetForm(JsonForm):
    name = StringField('Nombre', validators=[DataRequired(), Length(max=150)])
    address = StringField('Dirección', validators=[Optional(), Length(max=255)])
    area_sqm = DecimalField('Superficie (m²)', validators=[Optional(), NumberRange(min=0)])
    owner_id = IntegerField('Propietario', validators=[Optional()])

    def validate_owner_id(self, field):
        if not _exists(Owner, field.data):
            raise ValidationError('El propietario no existe.')


# --- CONTRATOS ---
class ExtensionForm(Form):
    doc_date = DateField('Fecha documento', format='%Y-%m-%d', validators=[Optional()])
    document = StringField('Documento', validators=[Optional(), Length(max=255)])
    extended_until = DateField('Prorrogado hasta', format='%Y-%m-%d', validators=[DataRequired()])


class IrregularInvoiceForm(Form):
    month = IntegerField('Mes', validators=[InputRequired(), NumberRange(min=1, max=12)])
    day = IntegerField('Día', validators=[InputRequired(), NumberRange(min=1, max=31)])
    amount_eur = DecimalField('Importe EUR', validators=[InputRequired(), NumberRange(min=0)])


class ContractPartnerForm(Form):
    partner_id = IntegerField('Socio', validators=[Optional()])
    name = StringField('Nombre', validators=[DataRequired(), Length(max=150)])
    share_percent = DecimalField('Cuota %', validators=[Optional(), NumberRange(min=0, max=100)])


class ContractForm(JsonForm):
    name = StringField('Nombre', validators=[DataRequired(), Length(max=150)])
    asset_id = IntegerField('Inmueble', validators=[Optional()])
    owner_id = IntegerField('Propietario', validators=[Optional()])
    owner_name = StringField('Nombre propietario', validators=[Optional(), Length(max=150)])
    partner_id = IntegerField('Socio', validators=[Optional()])
    partner_name = StringField('Nombre socio', validators=[Optional(), Length(max=150)])
    signed_at = DateField('Firmado', format='%Y-%m-%d', validators=[DataRequired()])
    start_date = DateField('Inicio', format='%Y-%m-%d', validators=[DataRequired()])
    end_date = DateField('Fin', format='%Y-%m-%d', validators=[DataRequired()])
    payment_due_days = IntegerField('Días de pago', default=0, validators=[Optional(), NumberRange(min=0, max=120)])
    indexing_day = IntegerField('Día indexación', validators=[Optional(), NumberRange(min=1, max=31)])
    indexing_month = IntegerField('Mes indexación', validators=[Optional(), NumberRange(min=1, max=12)])
    how_often_is_indexing = IntegerField('Cada N meses', validators=[Optional(), NumberRange(min=1, max=12)])
    rent_type = SelectField('Tipo de alquiler', choices=[(v, v) for v in RENT_TYPES], default='monthly')
    invoice_month_mode = SelectField('Mes facturado', choices=[(v, v) for v in INVOICE_MONTH_MODES], default='current')
    monthly_invoice_day = IntegerField('Día de factura', validators=[Optional(), NumberRange(min=1, max=31)])
    rent_amount_eur = DecimalField('Alquiler EUR', validators=[Optional(), NumberRange(min=0)])
    exchange_rate_ron = DecimalField('Curso RON/EUR', places=4, validators=[Optional(), NumberRange(min=0)])
    tva_percent = IntegerField('TVA %', default=0, validators=[Optional(), NumberRange(min=0, max=100)])
    correction_percent = DecimalField('Corrección %', validators=[Optional(), NumberRange(min=-100, max=100)])
    notes = TextAreaField('Notas', validators=[Optional(), Length(max=5000)])
    extensions = FieldList(FormField(ExtensionForm))
    irregular_invoices = FieldList(FormField(IrregularInvoiceForm))
    partners = FieldList(FormField(ContractPartnerForm))

    def __init__(self, *args, **kwargs):
        self.original_obj = kwargs.pop('original_obj', None)
        super(ContractForm, self).__init__(*args, **kwargs)

    def validate(self, extra_validators=None):
        ok = super(ContractForm, self).validate(extra_validators)
        values = [self.indexing_day.data, self.indexing_month.data, self.how_often_is_indexing.data]
        if any(v is not None for v in values) and not all(v is not None for v in values):
            self.indexing_day.errors.append('Día, mes y frecuencia de indexación van juntos (todos o ninguno).')
            ok = False
        return ok

    def validate_name(self, field):
        query = Contract.query.filter_by(name=field.data.strip())
        if self.original_obj and self.original_obj.id:
            query = query.filter(Contract.id != self.original_obj.id)
        if query.first():
            raise ValidationError('Ya existe un contrato con este nombre.')

    def validate_start_date(self, field):
        if field.data and self.signed_at.data and field.data < self.signed_at.data:
            raise ValidationError('La fecha de inicio no puede ser anterior a la firma.')

    def validate_end_date(self, field):
        if field.data and self.start_date.data and field.data < self.start_date.data:
            raise ValidationError('La fecha de fin no puede ser anterior al inicio.')

    def validate_asset_id(self, field):
        if not _exists(Asset, field.data):
            raise ValidationError('El inmueble no existe.')

    def validate_owner_id(self, field):
        if not _exists(Owner, field.data):
            raise ValidationError('El propietario no existe.')

    def validate_partner_id(self, field):
        if not _exists(Partner, field.data):
            raise ValidationError('El socio no existe.')

    def validate_extensions(self, field):
        end = self.end_date.data
        for entry in field.entries:
            until = entry.form.extended_until.data
            if end and until and until < end:
                raise ValidationError('Una prórroga no puede terminar antes del fin del contrato.')

    def validate_irregular_invoices(self, field):
        if self.rent_type.data == 'yearly' and not field.entries:
            raise ValidationError('Los contratos anuales necesitan al menos una factura irregular.')

    def validate_partners(self, field):
        total = sum((entry.form.share_percent.data or 0) for entry in field.entries)
        if total > 100:
            raise ValidationError('La suma de cuotas de los socios no puede superar el 100%.')


# --- DEPÓSITOS ---
class DepositForm(JsonForm):
    type = SelectField('Tipo', choices=[(v, v) for v in DEPOSIT_TYPES], validators=[DataRequired()])
    is_deposited = BooleanField('Depositado')
    returned = BooleanField('Devuelto')
    amount_eur = DecimalField('Importe EUR', validators=[Optional(), NumberRange(min=0)])
    amount_ron = DecimalField('Importe RON', validators=[Optional(), NumberRange(min=0)])
    note = TextAreaField('Nota', validators=[Optional(), Length(max=1000)])


# --- FACTURAS ---
class InvoiceIssueForm(JsonForm):
    contract_id = IntegerField('Contrato', validators=[InputRequired()])
    issued_at = DateField('Fecha de emisión', format='%Y-%m-%d', validators=[DataRequired()])
    number = StringField('Número', validators=[Optional(), Length(max=70)])
    amount_eur = DecimalField('Importe EUR', validators=[Optional(), NumberRange(min=0)])

    def validate_number(self, field):
        if field.data:
            field.data = field.data.strip() or None


class InvoiceSettingsForm(JsonForm):
    owner_id = StringField('Propietario', validators=[Optional(), Length(max=120)])
    owner_name = StringField('Nombre propietario', validators=[Optional(), Length(max=150)])
    series = StringField('Serie', validators=[DataRequired(), Length(max=20)])
    next_number = IntegerField('Siguiente número', validators=[InputRequired(), NumberRange(min=1)])
    pad_width = IntegerField('Ancho', validators=[InputRequired(), NumberRange(min=1, max=10)])
    include_year = BooleanField('Incluir año')


# --- INFLACIÓN ---
class HicpFallbackForm(JsonForm):
    month = StringField('Mes', validators=[DataRequired(), Regexp(MONTH_KEY_PATTERN, message='Formato de mes inválido (YYYY-MM).')])
    index = FloatField('Índice', validators=[InputRequired()])

    def validate_index(self, field):
        if field.data is None or field.data <= 0:
            raise ValidationError('El índice debe ser positivo.')


class InflationPeriodForm(JsonForm):
    from_month = StringField('Desde', validators=[DataRequired(), Regexp(MONTH_KEY_PATTERN, message='Formato de mes inválido (YYYY-MM).')])
    to_month = StringField('Hasta', validators=[Optional(), Regexp(MONTH_KEY_PATTERN, message='Formato de mes inválido (YYYY-MM).')])


class IndexingApplyForm(JsonForm):
    percent = FloatField('Inflación %', validators=[Optional(), NumberRange(min=-50, max=100)])
    from_month = StringField('Desde', validators=[Optional(), Regexp(MONTH_KEY_PATTERN, message='Formato de mes inválido (YYYY-MM).')])
    to_month = StringField('Hasta', validators=[Optional(), Regexp(MONTH_KEY_PATTERN, message='Formato de mes inválido (YYYY-MM).')])
    actual_date = DateField('Fecha aplicada', format='%Y-%m-%d', validators=[Optional()])
    document = StringField('Documento', validators=[Optional(), Length(max=255)])

    def validate(self, extra_validators=None):
        ok = super(IndexingApplyForm, self).validate(extra_validators)
        if ok and self.percent.data is None and not self.from_month.data:
            self.percent.errors.append('Indica el porcentaje o el mes de inicio para calcularlo.')
            ok = False
        return ok


# --- CURSO / MENSAJES ---
class ExchangeRateApplyForm(JsonForm):
    rate = DecimalField('Curso', places=4, validators=[Optional(), NumberRange(min=0.0001)])


class MessageForm(JsonForm):
    text = StringField('Mensaje', validators=[DataRequired(), Length(max=2000)])
    level = SelectField('Nivel', choices=[(v, v) for v in NOTIFICATION_LEVELS], default='info')
    related_url = StringField('Enlace', validators=[Optional(), Length(max=255)])
