# rentdesk/models.py
import os
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import UniqueConstraint, CheckConstraint, Numeric, Integer, String, Boolean, DateTime, Float, Text
from . import db
from .utils.dates import today_bucharest
from .utils.formatting import decimal_or_none

# --- CONSTANTES ---
RENT_TYPES = ('monthly', 'yearly')
INVOICE_MONTH_MODES = ('current', 'next')
DEPOSIT_TYPES = ('bank_transfer', 'check', 'promissory_note')
NOTIFICATION_LEVELS = ('info', 'success', 'warning', 'danger')
HICP_SERIES_KEY = 'EA_HICP_2015'


def _iso(value):
    return value.isoformat() if value else None


# --- FUNCIONES AUXILIARES ---
def initialize_database():
    """Crea tablas y la carpeta de datos locales (requiere contexto de app)."""
    local_dir = current_app.config.get('LOCAL_DATA_DIR')
    if local_dir:
        try:
            os.makedirs(local_dir, exist_ok=True)
        except OSError as e:
            current_app.logger.error(f"No se pudo crear la carpeta de datos locales '{local_dir}': {e}")
    db.create_all()

# --------------------------------------------

class Owner(db.Model):
    __tablename__ = 'owner'
    id = db.Column(Integer, primary_key=True)
    name = db.Column(String(150), nullable=False)
    vat_number = db.Column(String(30))
    orc_number = db.Column(String(40))
    headquarters = db.Column(String(255))
    administrators = db.Column(db.JSON, default=list)
    bank_account = db.Column(String(50))
    emails = db.Column(db.JSON, default=list)
    phone_numbers = db.Column(db.JSON, default=list)
    created_at = db.Column(DateTime, default=datetime.utcnow)
    assets = db.relationship('Asset', backref='owner_ref', lazy='select')
    contracts = db.relationship('Contract', backref='owner_ref', lazy='select')

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'vat_number': self.vat_number,
            'orc_number': self.orc_number, 'headquarters': self.headquarters,
            'administrators': self.administrators or [], 'bank_account': self.bank_account,
            'emails': self.emails or [], 'phone_numbers': self.phone_numbers or [],
            'created_at': _iso(self.created_at),
        }

    def __repr__(self): return f'<Owner {self.id}: {self.name}>'


class Partner(db.Model):
    __tablename__ = 'partner'
    id = db.Column(Integer, primary_key=True)
    name = db.Column(String(150), nullable=False)
    vat_number = db.Column(String(30))
    orc_number = db.Column(String(40))
    headquarters = db.Column(String(255))
    phone = db.Column(String(30))
    email = db.Column(String(120))
    created_at = db.Column(DateTime, default=datetime.utcnow)
    contracts = db.relationship('Contract', backref='partner_ref', lazy='select')

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'vat_number': self.vat_number,
            'orc_number': self.orc_number, 'headquarters': self.headquarters,
            'phone': self.phone, 'email': self.email, 'created_at': _iso(self.created_at),
        }

    def __repr__(self): return f'<Partner {self.id}: {self.name}>'


class Asset(db.Model):
    __tablename__ = 'asset'
    id = db.Column(Integer, primary_key=True)
    name = db.Column(String(150), nullable=False)
    address = db.Column(String(255))
    area_sqm = db.Column(Numeric(10, 2), nullable=True)
    owner_id = db.Column(Integer, db.ForeignKey('owner.id'), nullable=True)
    created_at = db.Column(DateTime, default=datetime.utcnow)
    contracts = db.relationship('Contract', backref='asset_ref', lazy='select')

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'address': self.address,
            'area_sqm': decimal_or_none(self.area_sqm), 'owner_id': self.owner_id,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self): return f'<Asset {self.id}: {self.name}>'


class Contract(db.Model):
    __tablename__ = 'contract'
    id = db.Column(Integer, primary_key=True)
    name = db.Column(String(150), unique=True, nullable=False)
    asset_id = db.Column(Integer, db.ForeignKey('asset.id'), nullable=True, index=True)
    owner_id = db.Column(Integer, db.ForeignKey('owner.id'), nullable=True)
    owner_name = db.Column(String(150))
    partner_id = db.Column(Integer, db.ForeignKey('partner.id'), nullable=True)
    partner_name = db.Column(String(150))
    signed_at = db.Column(db.Date, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    payment_due_days = db.Column(Integer, default=0, nullable=False)
    # Indexación: los tres campos van juntos o ninguno
    indexing_day = db.Column(Integer, nullable=True)
    indexing_month = db.Column(Integer, nullable=True)
    how_often_is_indexing = db.Column(Integer, nullable=True) # cada N meses
    rent_type = db.Column(String(10), default='monthly', nullable=False)
    invoice_month_mode = db.Column(String(10), default='current', nullable=False)
    monthly_invoice_day = db.Column(Integer, nullable=True)
    rent_amount_eur = db.Column(Numeric(12, 2), nullable=True)
    exchange_rate_ron = db.Column(Numeric(10, 4), nullable=True)
    tva_percent = db.Column(Integer, default=0, nullable=False)
    correction_percent = db.Column(Numeric(6, 2), default=Decimal('0.00'), nullable=False)
    notes = db.Column(Text)
    # Última verificación de inflación HICP
    inflation_percent = db.Column(Float, nullable=True)
    inflation_from_month = db.Column(String(7), nullable=True)
    inflation_to_month = db.Column(String(7), nullable=True)
    inflation_verified_at = db.Column(DateTime, nullable=True)
    created_at = db.Column(DateTime, default=datetime.utcnow)
    updated_at = db.Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    extensions = db.relationship('ContractExtension', backref='contract_ref', lazy='select',
                                 cascade="all, delete-orphan", order_by='ContractExtension.extended_until')
    indexing_dates = db.relationship('IndexingDate', backref='contract_ref', lazy='select',
                                     cascade="all, delete-orphan", order_by='IndexingDate.forecast_date')
    irregular_invoices = db.relationship('IrregularInvoice', backref='contract_ref', lazy='select',
                                         cascade="all, delete-orphan")
    partner_shares = db.relationship('ContractPartner', backref='contract_ref', lazy='select',
                                     cascade="all, delete-orphan")
    deposits = db.relationship('Deposit', backref='contract_ref', lazy='select', cascade="all, delete-orphan")
    invoices = db.relationship('Invoice', backref='contract_ref', lazy='select')

    __table_args__ = (
        CheckConstraint("rent_type IN ('monthly', 'yearly')", name='chk_contract_rent_type'),
        CheckConstraint("invoice_month_mode IN ('current', 'next')", name='chk_contract_invoice_month_mode'),
        CheckConstraint("tva_percent >= 0 AND tva_percent <= 100", name='chk_contract_tva_percent'),
        CheckConstraint("payment_due_days >= 0 AND payment_due_days <= 120", name='chk_contract_due_days'),
    )

    @property
    def effective_end_date(self):
        """Última prórroga (extended_until) o, si no hay, end_date."""
        extended = [ext.extended_until for ext in self.extensions if ext.extended_until]
        return max(extended) if extended else self.end_date

    def is_active(self, on_date=None):
        on_date = on_date or today_bucharest()
        return self.start_date <= on_date <= self.effective_end_date if self.start_date else False

    def to_dict(self, detail=True):
        data = {
            'id': self.id, 'name': self.name, 'asset_id': self.asset_id,
            'owner_id': self.owner_id, 'owner_name': self.owner_name,
            'partner_id': self.partner_id, 'partner_name': self.partner_name,
            'signed_at': _iso(self.signed_at), 'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date), 'effective_end_date': _iso(self.effective_end_date),
            'payment_due_days': self.payment_due_days,
            'indexing_day': self.indexing_day, 'indexing_month': self.indexing_month,
            'how_often_is_indexing': self.how_often_is_indexing,
            'rent_type': self.rent_type, 'invoice_month_mode': self.invoice_month_mode,
            'monthly_invoice_day': self.monthly_invoice_day,
            'rent_amount_eur': decimal_or_none(self.rent_amount_eur),
            'exchange_rate_ron': decimal_or_none(self.exchange_rate_ron),
            'tva_percent': self.tva_percent,
            'correction_percent': decimal_or_none(self.correction_percent),
            'notes': self.notes,
            'inflation_percent': self.inflation_percent,
            'inflation_from_month': self.inflation_from_month,
            'inflation_to_month': self.inflation_to_month,
            'inflation_verified_at': _iso(self.inflation_verified_at),
        }
        if detail:
            data['extensions'] = [e.to_dict() for e in self.extensions]
            data['indexing_dates'] = [i.to_dict() for i in self.indexing_dates]
            data['irregular_invoices'] = [i.to_dict() for i in self.irregular_invoices]
            data['partners'] = [p.to_dict() for p in self.partner_shares]
        return data

    def __repr__(self): return f'<Contract {self.id}: {self.name}>'


class ContractExtension(db.Model):
    __tablename__ = 'contract_extension'
    id = db.Column(Integer, primary_key=True)
    contract_id = db.Column(Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), nullable=False, index=True)
    doc_date = db.Column(db.Date, nullable=True)
    document = db.Column(String(255))
    extended_until = db.Column(db.Date, nullable=False)

    def to_dict(self):
        return {'id': self.id, 'doc_date': _iso(self.doc_date), 'document': self.document,
                'extended_until': _iso(self.extended_until)}


class IndexingDate(db.Model):
    __tablename__ = 'indexing_date'
    id = db.Column(Integer, primary_key=True)
    contract_id = db.Column(Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), nullable=False, index=True)
    forecast_date = db.Column(db.Date, nullable=False)
    actual_date = db.Column(db.Date, nullable=True)
    document = db.Column(String(255))
    new_rent_amount = db.Column(Numeric(12, 2), nullable=True)
    done = db.Column(Boolean, default=False, nullable=False)

    __table_args__ = (UniqueConstraint('contract_id', 'forecast_date', name='uq_indexing_contract_forecast'),)

    @property
    def effective_date(self):
        return self.actual_date or self.forecast_date

    def to_dict(self):
        return {'id': self.id, 'forecast_date': _iso(self.forecast_date), 'actual_date': _iso(self.actual_date),
                'document': self.document, 'new_rent_amount': decimal_or_none(self.new_rent_amount),
                'done': self.done}


class IrregularInvoice(db.Model):
    __tablename__ = 'irregular_invoice'
    id = db.Column(Integer, primary_key=True)
    contract_id = db.Column(Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), nullable=False, index=True)
    month = db.Column(Integer, nullable=False)
    day = db.Column(Integer, nullable=False)
    amount_eur = db.Column(Numeric(12, 2), nullable=False)

    def to_dict(self):
        return {'id': self.id, 'month': self.month, 'day': self.day, 'amount_eur': decimal_or_none(self.amount_eur)}


class ContractPartner(db.Model):
    __tablename__ = 'contract_partner'
    id = db.Column(Integer, primary_key=True)
    contract_id = db.Column(Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), nullable=False, index=True)
    partner_id = db.Column(Integer, db.ForeignKey('partner.id'), nullable=True)
    name = db.Column(String(150), nullable=False)
    share_percent = db.Column(Numeric(5, 2), nullable=True)

    def to_dict(self):
        return {'id': self.id, 'partner_id': self.partner_id, 'name': self.name,
                'share_percent': decimal_or_none(self.share_percent)}


class Deposit(db.Model):
    __tablename__ = 'deposit'
    id = db.Column(Integer, primary_key=True)
    contract_id = db.Column(Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), nullable=False, index=True)
    type = db.Column(String(20), nullable=False)
    is_deposited = db.Column(Boolean, default=False, nullable=False)
    returned = db.Column(Boolean, default=False, nullable=False)
    amount_eur = db.Column(Numeric(12, 2), nullable=True)
    amount_ron = db.Column(Numeric(12, 2), nullable=True)
    note = db.Column(Text)
    created_at = db.Column(DateTime, default=datetime.utcnow)
    updated_at = db.Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("type IN ('bank_transfer', 'check', 'promissory_note')", name='chk_deposit_type'),
    )

    def to_dict(self):
        return {'id': self.id, 'contract_id': self.contract_id, 'type': self.type,
                'is_deposited': self.is_deposited, 'returned': self.returned,
                'amount_eur': decimal_or_none(self.amount_eur), 'amount_ron': decimal_or_none(self.amount_ron),
                'note': self.note, 'created_at': _iso(self.created_at), 'updated_at': _iso(self.updated_at)}

    def __repr__(self): return f'<Deposit {self.id} ({self.type}) contrato={self.contract_id}>'


class Invoice(db.Model):
    __tablename__ = 'invoice'
    id = db.Column(Integer, primary_key=True)
    number = db.Column(String(70), unique=True, nullable=False)
    contract_id = db.Column(Integer, db.ForeignKey('contract.id'), nullable=True, index=True)
    contract_name = db.Column(String(150))
    issued_at = db.Column(db.Date, nullable=False, index=True)
    due_days = db.Column(Integer, default=0, nullable=False)
    owner_id = db.Column(Integer, nullable=True)
    owner_name = db.Column(String(150))
    partner_id = db.Column(Integer, nullable=True)
    partner_name = db.Column(String(150))
    amount_eur = db.Column(Numeric(12, 2), nullable=False)
    correction_percent = db.Column(Numeric(6, 2), default=Decimal('0.00'), nullable=False)
    corrected_amount_eur = db.Column(Numeric(12, 2), nullable=False)
    exchange_rate_ron = db.Column(Numeric(10, 4), nullable=False)
    net_ron = db.Column(Numeric(12, 2), nullable=False)
    tva_percent = db.Column(Integer, default=0, nullable=False)
    vat_ron = db.Column(Numeric(12, 2), nullable=False)
    total_ron = db.Column(Numeric(12, 2), nullable=False)
    note = db.Column(Text)
    created_at = db.Column(DateTime, default=datetime.utcnow)
    updated_at = db.Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_invoice_contract_issued', 'contract_id', 'issued_at'),
    )

    @property
    def due_date(self):
        return self.issued_at + timedelta(days=self.due_days or 0) if self.issued_at else None

    def to_dict(self):
        return {
            'id': self.id, 'number': self.number, 'contract_id': self.contract_id,
            'contract_name': self.contract_name, 'issued_at': _iso(self.issued_at),
            'due_days': self.due_days, 'due_date': _iso(self.due_date),
            'owner_id': self.owner_id, 'owner_name': self.owner_name,
            'partner_id': self.partner_id, 'partner_name': self.partner_name,
            'amount_eur': decimal_or_none(self.amount_eur),
            'correction_percent': decimal_or_none(self.correction_percent),
            'corrected_amount_eur': decimal_or_none(self.corrected_amount_eur),
            'exchange_rate_ron': decimal_or_none(self.exchange_rate_ron),
            'net_ron': decimal_or_none(self.net_ron), 'tva_percent': self.tva_percent,
            'vat_ron': decimal_or_none(self.vat_ron), 'total_ron': decimal_or_none(self.total_ron),
            'note': self.note, 'created_at': _iso(self.created_at), 'updated_at': _iso(self.updated_at),
        }

    def __repr__(self): return f'<Invoice {self.id}: {self.number}>'


class InvoiceSequence(db.Model):
    """Contador de numeración por propietario. Nunca se borra."""
    __tablename__ = 'invoice_sequence'
    id = db.Column(Integer, primary_key=True)
    owner_key = db.Column(String(120), nullable=False, unique=True)
    series = db.Column(String(20), nullable=False, default='MS')
    next_number = db.Column(Integer, nullable=False, default=1)
    pad_width = db.Column(Integer, nullable=False, default=5)
    include_year = db.Column(Boolean, nullable=False, default=True)
    updated_at = db.Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("next_number >= 1", name='chk_invoice_sequence_next_ge1'),
        CheckConstraint("pad_width >= 1 AND pad_width <= 10", name='chk_invoice_sequence_pad_width'),
    )

    def __repr__(self): return f'<InvoiceSequence {self.owner_key}: {self.series} next={self.next_number}>'


class ExchangeRate(db.Model):
    __tablename__ = 'exchange_rate'
    id = db.Column(Integer, primary_key=True)
    key = db.Column(String(30), nullable=False) # EURRON, BT_EUR_SELL, RAI_EUR_SELL
    date = db.Column(db.Date, nullable=False)
    rate = db.Column(Float, nullable=False)
    fetched_at = db.Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('key', 'date', name='uq_exchange_rate_key_date'),
        CheckConstraint("rate > 0", name='chk_exchange_rate_positive'),
    )

    def to_dict(self):
        return {'key': self.key, 'date': _iso(self.date), 'rate': self.rate, 'fetched_at': _iso(self.fetched_at)}

    def __repr__(self): return f'<ExchangeRate {self.key} {self.date}: {self.rate}>'


class HicpIndex(db.Model):
    __tablename__ = 'hicp_index'
    id = db.Column(Integer, primary_key=True)
    series_key = db.Column(String(30), nullable=False, default=HICP_SERIES_KEY)
    month = db.Column(String(7), nullable=False) # YYYY-MM
    value = db.Column(Float, nullable=False)     # HICP 2015=100
    fetched_at = db.Column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint('series_key', 'month', name='uq_hicp_series_month'),)

    def __repr__(self): return f'<HicpIndex {self.month}: {self.value}>'


class Notification(db.Model):
    __tablename__ = 'notification'
    id = db.Column(db.Integer, primary_key=True)
    message = db.Column(db.Text, nullable=False)
    level = db.Column(db.String(20), nullable=False, default='info') # 'info', 'success', 'warning', 'danger'
    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    related_url = db.Column(db.String(255), nullable=True)
    dedupe_key = db.Column(db.String(200), nullable=True, unique=True)

    def to_dict(self):
        return {'id': self.id, 'message': self.message, 'level': self.level, 'is_read': self.is_read,
                'timestamp': _iso(self.timestamp), 'related_url': self.related_url}

    def __repr__(self): return f'<Notification {self.id} [{self.level}] Read: {self.is_read}>'
