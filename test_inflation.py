# test_inflation.py
import json
import os
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests

from rentdesk import db
from rentdesk.models import HicpIndex
from rentdesk.utils.inflation import (
    ECB_HEADERS, HICP_FALLBACK_FILE, delete_hicp_fallback, ensure_hicp_series, get_euro_inflation_percent,
    get_hicp_index, parse_sdmx_series, read_hicp_fallback, upsert_hicp_fallback,
)

GET_PATH = 'rentdesk.utils.inflation.requests.get'


def _sdmx(values):
    months = list(values)
    return {
        'dataSets': [{'series': {'0:0:0:0:0:0': {
            'observations': {str(i): [values[m]] for i, m in enumerate(months)},
        }}}],
        'structure': {'dimensions': {'observation': [
            {'id': 'TIME_PERIOD', 'values': [{'id': m} for m in months]},
        ]}},
    }


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def test_parse_sdmx_series_skips_missing_observations():
    payload = _sdmx({'2024-01': 100.0, '2024-02': 101.5, '2024-03': None})
    assert parse_sdmx_series(payload) == {'2024-01': 100.0, '2024-02': 101.5}


@pytest.mark.parametrize('payload', [{}, {'dataSets': []}, {'dataSets': [{'series': {}}]}, None])
def test_parse_sdmx_series_rejects_malformed_payload(payload):
    with pytest.raises(ValueError):
        parse_sdmx_series(payload)


def test_percent_from_ecb_series(app):
    payload = _sdmx({'2024-01': 100.0, '2024-02': 101.0, '2024-06': 103.0})
    with patch(GET_PATH, return_value=_response(payload)) as mock_get:
        result = get_euro_inflation_percent('2024-01', '2024-06')
    assert result['percent'] == pytest.approx(3.0)
    assert result['from_index'] == 100.0
    assert result['to_index'] == 103.0
    assert mock_get.call_args.kwargs['headers'] == ECB_HEADERS
    assert mock_get.call_args.kwargs['timeout'] == app.config['INFLATION_FETCH_TIMEOUT']
    assert HicpIndex.query.count() == 3


def test_months_snap_to_latest_available(app):
    payload = _sdmx({'2024-01': 100.0, '2024-06': 103.0})
    with patch(GET_PATH, return_value=_response(payload)):
        result = get_euro_inflation_percent('2024-03', '2024-06')
    assert result['from_month'] == '2024-01'
    assert result['to_month'] == '2024-06'


def test_stored_series_avoids_fetch(app):
    db.session.add_all([HicpIndex(month='2024-01', value=120.0), HicpIndex(month='2024-05', value=123.6)])
    db.session.commit()
    with patch(GET_PATH) as mock_get:
        assert get_hicp_index('2024-05') == 123.6
    mock_get.assert_not_called()
    with patch(GET_PATH, side_effect=requests.exceptions.ConnectionError('sin red')):
        assert get_hicp_index('2024-03') == 120.0


def test_recent_series_serves_unpublished_month(app):
    db.session.add_all([HicpIndex(month='2024-01', value=120.0), HicpIndex(month='2024-05', value=123.6)])
    db.session.commit()
    with patch(GET_PATH) as mock_get:
        assert get_hicp_index('2024-07') == 123.6
        result = get_euro_inflation_percent('2024-01', '2024-08')
    mock_get.assert_not_called()
    assert result['to_month'] == '2024-05'


def test_old_series_is_refreshed_for_unpublished_month(app):
    stale = datetime.utcnow() - timedelta(hours=app.config['HICP_REFRESH_HOURS'] + 1)
    db.session.add(HicpIndex(month='2024-05', value=123.6, fetched_at=stale))
    db.session.commit()
    payload = _sdmx({'2024-05': 123.6, '2024-06': 124.0})
    with patch(GET_PATH, return_value=_response(payload)) as mock_get:
        assert get_hicp_index('2024-07') == 124.0
        mock_get.assert_called_once()
        # La descarga renueva fetched_at: la siguiente consulta no vuelve al BCE
        assert get_hicp_index('2024-07') == 124.0
        mock_get.assert_called_once()


def test_force_refresh_always_fetches(app):
    db.session.add(HicpIndex(month='2024-05', value=123.6))
    db.session.commit()
    with patch(GET_PATH, return_value=_response(_sdmx({'2024-06': 124.0}))) as mock_get:
        assert get_hicp_index('2024-07', force_refresh=True) == 124.0
    mock_get.assert_called_once()


def test_ecb_failure_uses_manual_fallback(app):
    upsert_hicp_fallback('2024-01', 100)
    upsert_hicp_fallback('2024-12', 102.5)
    with patch(GET_PATH, side_effect=requests.exceptions.Timeout('lento')):
        result = get_euro_inflation_percent('2024-01', '2024-12')
    assert result['percent'] == pytest.approx(2.5)


def test_stored_rows_win_over_manual_fallback(app):
    upsert_hicp_fallback('2024-02', 999.0)
    db.session.add(HicpIndex(month='2024-02', value=110.0, fetched_at=datetime(2020, 1, 1)))
    db.session.commit()
    with patch(GET_PATH, side_effect=requests.exceptions.ConnectionError('sin red')):
        series = ensure_hicp_series('2024-06')
    assert series['2024-02'] == 110.0


def test_no_data_anywhere_returns_none(app):
    with patch(GET_PATH, return_value=_response({'unexpected': True})):
        assert get_euro_inflation_percent('2024-01', '2024-06') is None
        assert get_hicp_index('2024-06') is None


def test_fallback_file_roundtrip(app):
    upsert_hicp_fallback('2024-03', 101.2)
    upsert_hicp_fallback('2024-01', 100.0)
    with open(os.path.join(app.config['LOCAL_DATA_DIR'], HICP_FALLBACK_FILE), encoding='utf-8') as fh:
        assert list(json.load(fh)) == ['2024-01', '2024-03']
    assert delete_hicp_fallback('2024-01') == {'2024-03': 101.2}
    assert read_hicp_fallback() == {'2024-03': 101.2}


@pytest.mark.parametrize('month,index', [('2024-13', 100), ('2024/01', 100), ('2024-01', 0), ('2024-01', 'x')])
def test_fallback_rejects_invalid_values(app, month, index):
    with pytest.raises(ValueError):
        upsert_hicp_fallback(month, index)


def test_inflation_endpoints(client):
    assert client.put('/api/inflation/fallback', json={'month': '2024-01', 'index': 100}).status_code == 200
    assert client.put('/api/inflation/fallback', json={'month': '2024-07', 'index': 104}).status_code == 200
    assert client.put('/api/inflation/fallback', json={'month': 'julio', 'index': 1}).status_code == 400
    assert client.get('/api/inflation/fallback').get_json() == {'2024-01': 100.0, '2024-07': 104.0}

    with patch(GET_PATH, side_effect=requests.exceptions.ConnectionError('sin red')):
        response = client.get('/api/inflation/percent?from=2024-01&to=2024-07')
        assert response.status_code == 200
        assert response.get_json()['percent'] == pytest.approx(4.0)
        assert client.get('/api/inflation/percent?from=enero').status_code == 400

    assert client.delete('/api/inflation/fallback/2024-07').get_json() == {'2024-01': 100.0}
