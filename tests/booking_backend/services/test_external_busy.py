import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from booking_backend.models.integration import CompanyIntegration
from booking_backend.services.external_busy import (
    GOOGLE_FREEBUSY_URL,
    MS_GRAPH_ME_URL,
    MS_GRAPH_SCHEDULE_URL,
    ExternalBusyAggregator,
    parse_instant,
)

NOW = datetime(2026, 1, 5, 7, 0, tzinfo=timezone.utc)
RANGE_START = NOW
RANGE_END = NOW + timedelta(days=7)
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'


def make_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def add_integration(db, company_id: int, provider: str, **fields) -> CompanyIntegration:
    integration = CompanyIntegration(
        company_id=company_id,
        provider=provider,
        status='connected',
        access_token=fields.pop('access_token', 'access-1'),
        refresh_token=fields.pop('refresh_token', 'refresh-1'),
        token_expires_at=fields.pop('token_expires_at', NOW + timedelta(hours=1)),
    )
    db.add(integration)
    db.commit()
    return integration


def google_busy_response(busy: list[dict]) -> httpx.Response:
    return httpx.Response(200, json={'calendars': {'primary': {'busy': busy}}})


def test_parse_instant_handles_zulu_and_long_fractions() -> None:
    assert parse_instant('2026-01-05T09:00:00Z') == datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    assert parse_instant('2026-01-05T09:00:00.1234567') == datetime(2026, 1, 5, 9, 0, 0, 123456, tzinfo=timezone.utc)


def test_no_integrations_means_no_blocks_and_no_warning(db, company) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError('no provider should be called')

    result = ExternalBusyAggregator(db, http_client=make_client(handler)).collect(company.id, RANGE_START, RANGE_END)

    assert result.blocks == []
    assert result.warning is False


def test_google_busy_blocks_are_collected(db, company) -> None:
    add_integration(db, company.id, 'google_calendar')
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert str(request.url) == GOOGLE_FREEBUSY_URL
        assert request.headers['Authorization'] == 'Bearer access-1'
        return google_busy_response(
            [
                {'start': '2026-01-05T09:00:00Z', 'end': '2026-01-05T09:30:00Z'},
                {'start': 'garbage', 'end': '2026-01-05T10:00:00Z'},
                {'start': '2026-01-05T11:00:00Z', 'end': '2026-01-05T10:00:00Z'},
            ]
        )

    result = ExternalBusyAggregator(db, http_client=make_client(handler), now_fn=lambda: NOW).collect(
        company.id, RANGE_START, RANGE_END
    )

    assert len(seen) == 1
    assert [(block.start.hour, block.end.minute) for block in result.blocks] == [(9, 30)]
    assert result.sources == ['google_calendar']
    assert result.warning is False


def test_expiring_token_is_refreshed_and_persisted(db, company, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_backend.core.config.GOOGLE_OAUTH_CLIENT_ID', 'client-id')
    monkeypatch.setattr('booking_backend.core.config.GOOGLE_OAUTH_CLIENT_SECRET', 'client-secret')
    integration = add_integration(db, company.id, 'google_calendar', token_expires_at=NOW + timedelta(seconds=30))

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_TOKEN_URL:
            form = dict(httpx.QueryParams(request.content.decode()))
            assert form['grant_type'] == 'refresh_token'
            assert form['refresh_token'] == 'refresh-1'
            return httpx.Response(200, json={'access_token': 'access-2', 'expires_in': 3600, 'refresh_token': 'refresh-2'})
        assert request.headers['Authorization'] == 'Bearer access-2'
        return google_busy_response([])

    result = ExternalBusyAggregator(db, http_client=make_client(handler), now_fn=lambda: NOW).collect(
        company.id, RANGE_START, RANGE_END
    )

    db.refresh(integration)
    assert result.warning is False
    assert integration.access_token == 'access-2'
    assert integration.refresh_token == 'refresh-2'
    assert integration.token_expires_at.replace(tzinfo=timezone.utc) == NOW + timedelta(hours=1)


def test_refresh_without_oauth_credentials_fails_open(db, company, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_backend.core.config.GOOGLE_OAUTH_CLIENT_ID', '')
    add_integration(db, company.id, 'google_calendar', token_expires_at=NOW - timedelta(minutes=5))

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError('no provider should be called')

    result = ExternalBusyAggregator(db, http_client=make_client(handler), now_fn=lambda: NOW).collect(
        company.id, RANGE_START, RANGE_END
    )

    assert result.blocks == []
    assert result.warning is True


def test_failing_provider_warns_while_others_contribute(db, company) -> None:
    add_integration(db, company.id, 'google_calendar')
    add_integration(db, company.id, 'microsoft_calendar')

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == GOOGLE_FREEBUSY_URL:
            return httpx.Response(500, json={'error': {'message': 'backend error'}})
        if url.startswith(MS_GRAPH_ME_URL) and request.method == 'GET':
            return httpx.Response(200, json={'mail': 'owner@example.com'})
        if url == MS_GRAPH_SCHEDULE_URL:
            body = json.loads(request.content)
            assert body['schedules'] == ['owner@example.com']
            return httpx.Response(
                200,
                json={
                    'value': [
                        {
                            'scheduleItems': [
                                {
                                    'start': {'dateTime': '2026-01-05T13:00:00.0000000', 'timeZone': 'UTC'},
                                    'end': {'dateTime': '2026-01-05T14:00:00.0000000', 'timeZone': 'UTC'},
                                }
                            ]
                        }
                    ]
                },
            )
        raise AssertionError(f'unexpected request {url}')

    result = ExternalBusyAggregator(db, http_client=make_client(handler), now_fn=lambda: NOW).collect(
        company.id, RANGE_START, RANGE_END
    )

    assert result.warning is True
    assert result.sources == ['microsoft_calendar']
    assert [(block.start, block.end) for block in result.blocks] == [
        (datetime(2026, 1, 5, 13, 0, tzinfo=timezone.utc), datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)),
    ]


def test_network_errors_fail_open(db, company) -> None:
    add_integration(db, company.id, 'google_calendar')

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout('timed out', request=request)

    result = ExternalBusyAggregator(db, http_client=make_client(handler), now_fn=lambda: NOW).collect(
        company.id, RANGE_START, RANGE_END
    )

    assert result.blocks == []
    assert result.warning is True


def test_disconnected_integrations_are_skipped(db, company) -> None:
    integration = add_integration(db, company.id, 'google_calendar')
    integration.status = 'disconnected'
    db.commit()

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError('no provider should be called')

    result = ExternalBusyAggregator(db, http_client=make_client(handler)).collect(company.id, RANGE_START, RANGE_END)

    assert result.warning is False


def test_integration_without_tokens_is_skipped_with_log(db, company, caplog: pytest.LogCaptureFixture) -> None:
    add_integration(db, company.id, 'google_calendar', access_token=None, refresh_token=None)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError('no provider should be called')

    with caplog.at_level('INFO', logger='booking_backend.services.external_busy'):
        result = ExternalBusyAggregator(db, http_client=make_client(handler)).collect(company.id, RANGE_START, RANGE_END)

    assert result.blocks == []
    assert result.warning is False
    assert 'no access token' in caplog.text
