# conftest.py
import itertools
from datetime import date
from decimal import Decimal

import pytest

from rentdesk import create_app, db
from rentdesk.models import Contract
from rentdesk.utils.exchange import memory_cache


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'rentdesk-test.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'LOCAL_DATA_DIR': str(tmp_path / '.data'),
        'STORAGE_BACKEND': 'db',
        'SCHEDULER_ENABLED': False,
        'CRON_SECRET': None,
    }, instance_path=str(tmp_path / 'instance'))
    memory_cache.clear()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    memory_cache.clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_contract(app):
    """Crea y guarda un contrato mensual con valores razonables; cualquier campo se puede sobrescribir."""
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        data = dict(
            name=f"Contract {n}",
            signed_at=date(2024, 1, 1),
            start_date=date(2024, 1, 1),
            end_date=date(2026, 12, 31),
            rent_type='monthly',
            invoice_month_mode='current',
            rent_amount_eur=Decimal('1000.00'),
            exchange_rate_ron=Decimal('4.9750'),
            tva_percent=19,
            correction_percent=Decimal('0.00'),
            payment_due_days=10,
            owner_name='Owner SRL',
            partner_name='Chirias SRL',
        )
        data.update(overrides)
        contract = Contract(**data)
        db.session.add(contract)
        db.session.commit()
        return contract

    return _make
