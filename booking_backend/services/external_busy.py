"""Busy intervals from connected third-party calendars.

Fail-open: a provider that cannot be reached, refused the token refresh or
returned garbage contributes no blocks and flips ``warning``; it never fails
slot generation.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.clock import as_utc, utc_now
from booking_backend.models.integration import CompanyIntegration

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR = 'google_calendar'
MICROSOFT_CALENDAR = 'microsoft_calendar'
INTEGRATION_STATUS_CONNECTED = 'connected'

TOKEN_REFRESH_MARGIN = timedelta(seconds=60)

GOOGLE_FREEBUSY_URL = 'https://www.googleapis.com/calendar/v3/freeBusy'
MS_GRAPH_ME_URL = 'https://graph.microsoft.com/v1.0/me'
MS_GRAPH_SCHEDULE_URL = 'https://graph.microsoft.com/v1.0/me/calendar/getSchedule'

_FRACTION_PATTERN = re.compile(r'(\.\d{6})\d+')


@dataclass(frozen=True)
class ProviderConfig:
    key: str
    token_url: str
    scopes: tuple[str, ...]
    client_id_setting: str
    client_secret_setting: str

    @property
    def client_id(self) -> str:
        return getattr(config, self.client_id_setting, '') or ''

    @property
    def client_secret(self) -> str:
        return getattr(config, self.client_secret_setting, '') or ''


PROVIDERS = {
    GOOGLE_CALENDAR: ProviderConfig(
        key=GOOGLE_CALENDAR,
        token_url='https://oauth2.googleapis.com/token',
        scopes=('https://www.googleapis.com/auth/calendar.readonly',),
        client_id_setting='GOOGLE_OAUTH_CLIENT_ID',
        client_secret_setting='GOOGLE_OAUTH_CLIENT_SECRET',
    ),
    MICROSOFT_CALENDAR: ProviderConfig(
        key=MICROSOFT_CALENDAR,
        token_url='https://login.microsoftonline.com/common/oauth2/v2.0/token',
        scopes=('offline_access', 'Calendars.Read'),
        client_id_setting='MS_OAUTH_CLIENT_ID',
        client_secret_setting='MS_OAUTH_CLIENT_SECRET',
    ),
}


class ProviderError(Exception):
    pass


@dataclass(frozen=True)
class BusyBlock:
    start: datetime
    end: datetime


@dataclass
class ExternalBusyResult:
    blocks: list[BusyBlock] = field(default_factory=list)
    warning: bool = False
    sources: list[str] = field(default_factory=list)


def parse_instant(value) -> datetime:
    text = _FRACTION_PATTERN.sub(r'\1', str(value).strip().replace('Z', '+00:00'))
    return as_utc(datetime.fromisoformat(text))


def _valid_blocks(raw_items, start_key, end_key) -> list[BusyBlock]:
    blocks: list[BusyBlock] = []
    for item in raw_items or []:
        try:
            start = parse_instant(start_key(item))
            end = parse_instant(end_key(item))
        except (TypeError, ValueError, KeyError, AttributeError):
            continue
        if start < end:
            blocks.append(BusyBlock(start=start, end=end))
    return blocks


def _error_message(payload: dict) -> str:
    error = payload.get('error')
    if isinstance(error, dict):
        return str(error.get('message') or error.get('code') or 'unknown')
    return str(error or payload.get('message') or 'unknown')


def _json(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class ExternalBusyAggregator:
    def __init__(
        self,
        db: Session,
        http_client: httpx.Client | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self._http_client = http_client
        self._now = now_fn

    def collect(self, company_id: int, range_start: datetime, range_end: datetime) -> ExternalBusyResult:
        try:
            integrations = self.db.query(CompanyIntegration).filter(
                CompanyIntegration.company_id == company_id,
                CompanyIntegration.status == INTEGRATION_STATUS_CONNECTED,
                CompanyIntegration.provider.in_(tuple(PROVIDERS)),
            ).order_by(CompanyIntegration.id.asc()).all()
        except SQLAlchemyError:
            logger.exception('Could not load calendar integrations for company %s', company_id)
            return ExternalBusyResult(warning=True)

        if not integrations:
            return ExternalBusyResult()

        if self._http_client is not None:
            return self._collect(self._http_client, integrations, as_utc(range_start), as_utc(range_end))

        with httpx.Client(timeout=config.EXTERNAL_BUSY_TIMEOUT_SECONDS) as client:
            return self._collect(client, integrations, as_utc(range_start), as_utc(range_end))

    def _collect(
        self,
        client: httpx.Client,
        integrations: list[CompanyIntegration],
        range_start: datetime,
        range_end: datetime,
    ) -> ExternalBusyResult:
        result = ExternalBusyResult()

        for integration in integrations:
            provider = integration.provider
            try:
                access_token = self.ensure_fresh_token(client, integration)
                if not access_token:
                    logger.info(
                        'Skipping integration %s (%s): no access token and no refresh token',
                        integration.id,
                        provider,
                    )
                    continue

                if provider == GOOGLE_CALENDAR:
                    blocks = self._fetch_google_busy(client, access_token, range_start, range_end)
                else:
                    blocks = self._fetch_microsoft_busy(client, access_token, range_start, range_end)
            except (httpx.HTTPError, ProviderError, ValueError, TypeError, KeyError, SQLAlchemyError) as exc:
                logger.warning(
                    'Busy lookup failed for integration %s (%s): %s',
                    integration.id,
                    provider,
                    exc,
                )
                result.warning = True
                continue

            result.blocks.extend(blocks)
            if provider not in result.sources:
                result.sources.append(provider)

        return result

    def ensure_fresh_token(self, client: httpx.Client, integration: CompanyIntegration) -> str | None:
        expires_at = integration.token_expires_at
        expiring = expires_at is not None and as_utc(expires_at) < self._now() + TOKEN_REFRESH_MARGIN
        if not expiring or not integration.refresh_token:
            return integration.access_token

        refreshed = self.refresh_token(client, integration.provider, integration.refresh_token)

        integration.access_token = refreshed['access_token']
        integration.token_expires_at = refreshed['token_expires_at']
        if refreshed['refresh_token']:
            integration.refresh_token = refreshed['refresh_token']
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info('Refreshed %s access token for integration %s', integration.provider, integration.id)
        return integration.access_token

    def refresh_token(self, client: httpx.Client, provider: str, refresh_token: str) -> dict:
        provider_config = PROVIDERS[provider]
        if not provider_config.client_id or not provider_config.client_secret:
            raise ProviderError('missing_oauth_env')

        form = {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
            'client_id': provider_config.client_id,
            'client_secret': provider_config.client_secret,
        }
        if provider == MICROSOFT_CALENDAR:
            form['scope'] = ' '.join(provider_config.scopes)

        response = client.post(provider_config.token_url, data=form)
        payload = _json(response)
        if response.status_code != 200 or not payload.get('access_token'):
            raise ProviderError(f'refresh_failed:{response.status_code}:{_error_message(payload)}')

        expires_in = int(payload.get('expires_in') or 0)
        return {
            'access_token': str(payload['access_token']),
            'token_expires_at': self._now() + timedelta(seconds=expires_in) if expires_in else None,
            'refresh_token': str(payload['refresh_token']) if payload.get('refresh_token') else None,
        }

    def _fetch_google_busy(
        self,
        client: httpx.Client,
        access_token: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[BusyBlock]:
        response = client.post(
            GOOGLE_FREEBUSY_URL,
            headers={'Authorization': f'Bearer {access_token}'},
            json={
                'timeMin': range_start.isoformat(),
                'timeMax': range_end.isoformat(),
                'items': [{'id': 'primary'}],
            },
        )
        payload = _json(response)
        if response.status_code != 200:
            raise ProviderError(f'google_freebusy_failed:{response.status_code}:{_error_message(payload)}')

        primary = (payload.get('calendars') or {}).get('primary') or {}
        if primary.get('errors'):
            raise ProviderError(f"google_freebusy_failed:{primary['errors']}")

        return _valid_blocks(primary.get('busy'), lambda item: item['start'], lambda item: item['end'])

    def _fetch_microsoft_busy(
        self,
        client: httpx.Client,
        access_token: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[BusyBlock]:
        headers = {'Authorization': f'Bearer {access_token}'}

        me_response = client.get(MS_GRAPH_ME_URL, headers=headers, params={'$select': 'mail,userPrincipalName'})
        me = _json(me_response)
        if me_response.status_code != 200:
            raise ProviderError(f'ms_me_failed:{me_response.status_code}')

        # getSchedule wants a mailbox address, not "me".
        schedule_id = me.get('mail') or me.get('userPrincipalName')
        if not schedule_id:
            raise ProviderError('ms_missing_schedule_id')

        response = client.post(
            MS_GRAPH_SCHEDULE_URL,
            headers=headers,
            json={
                'schedules': [schedule_id],
                'startTime': {'dateTime': range_start.strftime('%Y-%m-%dT%H:%M:%S'), 'timeZone': 'UTC'},
                'endTime': {'dateTime': range_end.strftime('%Y-%m-%dT%H:%M:%S'), 'timeZone': 'UTC'},
                'availabilityViewInterval': 30,
            },
        )
        payload = _json(response)
        if response.status_code != 200:
            raise ProviderError(f'ms_getschedule_failed:{response.status_code}:{_error_message(payload)}')

        schedules = payload.get('value') or [{}]
        return _valid_blocks(
            schedules[0].get('scheduleItems'),
            lambda item: item['start']['dateTime'],
            lambda item: item['end']['dateTime'],
        )
