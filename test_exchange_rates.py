# test_exchange_rates.py
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from rentdesk import db
from rentdesk.models import ExchangeRate
from rentdesk.utils.dates import today_bucharest
from rentdesk.utils.exchange import (
    MemoryRateCache, get_rate, parse_bnr_xml, parse_bt_html, parse_rai_html, parse_rate_value,
)

BNR_XML = """<?xml version="1.0" encoding="utf-8"?>
<DataSet xmlns="http://www.bnr.ro/xsd">
  <Body>
    <Cube date="2025-03-14">
      <Rate currency="USD">4.5712</Rate>
      <Rate currency="EUR">4.9750</Rate>
    </Cube>
  </Body>
</DataSet>"""

BT_HTML = """<html><body><table>
<tr><th>Moneda</th><th>Cumpărare</th><th>BNR</th><th>Vânzare</th></tr>
<tr><td>EUR</td><td>4,9200</td><td>4,9750</td><td>5,0100</td></tr>
</table></body></html>"""

RAI_HTML = """<div class="rate"><span>EUR</span>
<span>Cumpărare: 4,9000</span><span>Vânzare: 5,0500</span></div>"""

GET_PATH = 'rentdesk.utils.exchange.requests.get'


def _response(text):
    response = MagicMock()
    response.text = text
    response.raise_for_status.return_value = None
    return response


@pytest.mark.parametrize('raw,expected', [
    ('4,9750', 4.975),
    ('4.9750 lei', 4.975),
    ('1.234,56', 1234.56),
    ('1,234.56', 1234.56),
    (5, 5.0),
])
def test_parse_rate_value(raw, expected):
    assert parse_rate_value(raw) == pytest.approx(expected)


@pytest.mark.parametrize('raw', ['', None, 'abc', '0,0000'])
def test_parse_rate_value_rejects_invalid(raw):
    with pytest.raises(ValueError):
        parse_rate_value(raw)


def test_parsers_extract_eur_sell_rate():
    assert parse_bnr_xml(BNR_XML) == pytest.approx(4.975)
    assert parse_bt_html(BT_HTML) == pytest.approx(5.01)
    assert parse_rai_html(RAI_HTML) == pytest.approx(5.05)


def test_parsers_fail_on_unexpected_markup():
    with pytest.raises(ValueError):
        parse_bnr_xml('<DataSet></DataSet>')
    with pytest.raises(ValueError):
        parse_bt_html('<p>mentenanță</p>')


def test_today_record_is_served_without_fetch(app):
    today = today_bucharest()
    db.session.add(ExchangeRate(key='EURRON', date=today, rate=4.97))
    db.session.commit()
    with patch(GET_PATH) as mock_get:
        result = get_rate('bnr', cache=MemoryRateCache())
    mock_get.assert_not_called()
    assert result.provenance == 'db'
    assert result.rate == pytest.approx(4.97)
    assert result.date == today.isoformat()


def test_live_fetch_persists_and_caches(app):
    cache = MemoryRateCache()
    today = today_bucharest()
    with patch(GET_PATH, return_value=_response(BNR_XML)) as mock_get:
        result = get_rate('bnr', cache=cache)
    assert result.provenance == 'bnr'
    assert result.rate == pytest.approx(4.975)
    assert mock_get.call_args.kwargs['timeout'] == app.config['EXCHANGE_FETCH_TIMEOUT']
    record = ExchangeRate.query.filter_by(key='EURRON', date=today).one()
    assert record.rate == pytest.approx(4.975)
    assert cache.get('EURRON') == (pytest.approx(4.975), today.isoformat())


def test_second_call_same_day_does_not_fetch_again(app):
    cache = MemoryRateCache()
    with patch(GET_PATH, return_value=_response(BNR_XML)) as mock_get:
        first = get_rate('bnr', cache=cache)
        second = get_rate('bnr', cache=cache)
    assert mock_get.call_count == 1
    assert first.rate == second.rate
    assert second.provenance == 'db'
    assert ExchangeRate.query.filter_by(key='EURRON').count() == 1


def test_force_refresh_skips_today_record_and_updates_it(app):
    today = today_bucharest()
    db.session.add(ExchangeRate(key='EURRON', date=today, rate=4.90))
    db.session.commit()
    with patch(GET_PATH, return_value=_response(BNR_XML)):
        result = get_rate('bnr', force_refresh=True, cache=MemoryRateCache())
    assert result.provenance == 'bnr'
    assert ExchangeRate.query.filter_by(key='EURRON').count() == 1
    assert ExchangeRate.query.filter_by(key='EURRON').one().rate == pytest.approx(4.975)


def test_network_failure_uses_latest_stale_record(app):
    db.session.add_all([
        ExchangeRate(key='EURRON', date=date(2024, 1, 4), rate=4.96),
        ExchangeRate(key='EURRON', date=date(2024, 1, 5), rate=4.97),
    ])
    db.session.commit()
    with patch(GET_PATH, side_effect=requests.exceptions.ConnectionError('sin red')):
        result = get_rate('bnr', cache=MemoryRateCache())
    assert result.provenance == 'db-stale'
    assert result.date == '2024-01-05'
    assert result.rate == pytest.approx(4.97)


def test_unparseable_page_falls_through(app):
    db.session.add(ExchangeRate(key='BT_EUR_SELL', date=date(2024, 2, 1), rate=5.02))
    db.session.commit()
    with patch(GET_PATH, return_value=_response('<html>captcha</html>')):
        result = get_rate('bt', cache=MemoryRateCache())
    assert result.provenance == 'db-stale'


def test_http_error_falls_through_to_memory_cache(app):
    cache = MemoryRateCache()
    cache.set('RAI_EUR_SELL', (5.04, '2025-01-10'))
    response = _response('')
    response.raise_for_status.side_effect = requests.exceptions.HTTPError('503')
    with patch(GET_PATH, return_value=response):
        result = get_rate('rai', cache=cache)
    assert result.provenance == 'cache'
    assert result.rate == 5.04
    assert result.date == '2025-01-10'


def test_default_rate_when_nothing_else_works(app):
    with patch(GET_PATH, side_effect=requests.exceptions.Timeout('lento')):
        result = get_rate('bt', cache=MemoryRateCache())
    assert result.provenance == 'default'
    assert result.rate == app.config['EXCHANGE_DEFAULT_RATE']
    assert result.date == today_bucharest().isoformat()


def test_sources_do_not_share_records(app):
    db.session.add(ExchangeRate(key='EURRON', date=today_bucharest(), rate=4.97))
    db.session.commit()
    with patch(GET_PATH, side_effect=requests.exceptions.ConnectionError('sin red')):
        result = get_rate('bt', cache=MemoryRateCache())
    assert result.provenance == 'default'


def test_unknown_source_raises(app):
    with pytest.raises(LookupError):
        get_rate('ing')


def test_exchange_endpoint(client):
    with patch(GET_PATH, return_value=_response(BNR_XML)):
        response = client.get('/api/exchange/bnr')
    assert response.status_code == 200
    assert response.get_json()['source'] == 'bnr'
    assert client.get('/api/exchange/ing').status_code == 404
