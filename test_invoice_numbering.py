# test_invoice_numbering.py
import json
import os
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from rentdesk.models import InvoiceSequence
from rentdesk.utils.local_store import LocalStoreError
from rentdesk.utils.invoice_numbering import (
    LOCAL_SETTINGS_FILE, allocate_invoice_number, format_invoice_number, get_invoice_settings,
    owner_key, save_invoice_settings,
)


def test_format_invoice_number_with_and_without_year():
    assert format_invoice_number('MS', 7, 5, True, 2025) == 'MS-2025-00007'
    assert format_invoice_number('MS', 7, 5, False, 2025) == 'MS-00007'
    assert format_invoice_number('FA', 123456, 3, True, 2024) == 'FA-2024-123456'


def test_owner_key_prefers_id_then_slug():
    assert owner_key(12, 'Ignorado SRL') == '12'
    assert owner_key(None, 'Măgura Imobiliare S.R.L.') == 'm-gura-imobiliare-s-r-l'
    assert owner_key(None, '  ') == 'owner'
    assert owner_key() == 'owner'


def test_first_allocation_creates_sequence(app):
    assert allocate_invoice_number(owner_name='Owner SRL', year=2025) == 'MS-2025-00001'
    assert allocate_invoice_number(owner_name='Owner SRL', year=2025) == 'MS-2025-00002'
    seq = InvoiceSequence.query.filter_by(owner_key='owner-srl').one()
    assert seq.next_number == 3


def test_owners_have_independent_counters(app):
    allocate_invoice_number(owner_id=1, year=2025)
    allocate_invoice_number(owner_id=1, year=2025)
    assert allocate_invoice_number(owner_id=2, year=2025) == 'MS-2025-00001'


def test_saved_settings_drive_next_number(app):
    save_invoice_settings(owner_id=5, series='RD', next_number=7, pad_width=4, include_year=False)
    assert allocate_invoice_number(owner_id=5, year=2025) == 'RD-0007'
    settings = get_invoice_settings(owner_id=5)
    assert settings['nextNumber'] == 8
    assert settings['series'] == 'RD'
    assert settings['includeYear'] is False


def test_default_settings_for_unknown_owner(app):
    settings = get_invoice_settings(owner_name='Nuevo')
    assert settings == {'ownerKey': 'nuevo', 'series': 'MS', 'nextNumber': 1,
                        'padWidth': 5, 'includeYear': True, 'updatedAt': None}


@pytest.mark.parametrize('kwargs', [
    {'series': '', 'next_number': 1, 'pad_width': 5},
    {'series': 'MS', 'next_number': 0, 'pad_width': 5},
    {'series': 'MS', 'next_number': 1, 'pad_width': 11},
])
def test_invalid_settings_are_rejected(app, kwargs):
    with pytest.raises(ValueError):
        save_invoice_settings(owner_id=1, **kwargs)


def test_local_backend_uses_json_file(app):
    app.config['STORAGE_BACKEND'] = 'local'
    assert allocate_invoice_number(owner_id=3, year=2025) == 'MS-2025-00001'
    assert allocate_invoice_number(owner_id=3, year=2025) == 'MS-2025-00002'
    with open(os.path.join(app.config['LOCAL_DATA_DIR'], LOCAL_SETTINGS_FILE), encoding='utf-8') as fh:
        data = json.load(fh)
    assert data['3']['nextNumber'] == 3
    assert InvoiceSequence.query.count() == 0


def test_database_failure_falls_back_to_local_counter(app):
    with patch('rentdesk.utils.invoice_numbering._increment_in_db', side_effect=SQLAlchemyError('caída')):
        number = allocate_invoice_number(owner_id=9, year=2026)
    assert number == 'MS-2026-00001'
    with open(os.path.join(app.config['LOCAL_DATA_DIR'], LOCAL_SETTINGS_FILE), encoding='utf-8') as fh:
        assert json.load(fh)['9']['nextNumber'] == 2


def test_corrupt_local_file_blocks_allocation(app):
    app.config['STORAGE_BACKEND'] = 'local'
    for _ in range(3):
        allocate_invoice_number(owner_id=3, year=2025)
    path = os.path.join(app.config['LOCAL_DATA_DIR'], LOCAL_SETTINGS_FILE)
    with open(path, 'a', encoding='utf-8') as fh:
        fh.write('x')
    with open(path, encoding='utf-8') as fh:
        corrupt = fh.read()

    with pytest.raises(LocalStoreError):
        allocate_invoice_number(owner_id=3, year=2025)
    with pytest.raises(LocalStoreError):
        save_invoice_settings(owner_id=4, series='B')
    # El fichero queda intacto para repararlo a mano
    with open(path, encoding='utf-8') as fh:
        assert fh.read() == corrupt


def test_corrupt_local_file_fails_issue_endpoint(app, client, make_contract):
    app.config['STORAGE_BACKEND'] = 'local'
    contract = make_contract()
    os.makedirs(app.config['LOCAL_DATA_DIR'], exist_ok=True)
    with open(os.path.join(app.config['LOCAL_DATA_DIR'], LOCAL_SETTINGS_FILE), 'w', encoding='utf-8') as fh:
        fh.write('{"1": ')
    response = client.post('/api/invoices/issue', json={'contract_id': contract.id, 'issued_at': '2025-03-03'})
    assert response.status_code == 503
    assert client.get('/api/invoices').get_json() == []


def test_concurrent_allocations_are_unique_and_contiguous(app):
    allocate_invoice_number(owner_id='concurrent', year=2025)

    def worker(_):
        with app.app_context():
            return allocate_invoice_number(owner_id='concurrent', year=2025)

    with ThreadPoolExecutor(max_workers=10) as pool:
        numbers = list(pool.map(worker, range(20)))

    assert len(set(numbers)) == 20
    sequences = sorted(int(n.rsplit('-', 1)[1]) for n in numbers)
    assert sequences == list(range(2, 22))
