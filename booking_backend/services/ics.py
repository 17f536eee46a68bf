"""iCalendar (RFC 5545) export of a tenant's appointments."""

from datetime import datetime
from typing import Iterable

from booking_backend.core import config
from booking_backend.core.clock import as_utc, utc_now
from booking_backend.models.appointment import Appointment

ICS_UID_DOMAIN = 'booking-engine'


def format_ics_datetime(value: datetime) -> str:
    return as_utc(value).strftime('%Y%m%dT%H%M%SZ')


def escape_ics_text(value) -> str:
    return (
        str(value if value is not None else '')
        .replace('\\', '\\\\')
        .replace('\r\n', '\n')
        .replace('\n', '\\n')
        .replace(',', '\\,')
        .replace(';', '\\;')
    )


def _description(appointment: Appointment) -> str:
    lines = [
        appointment.description or '',
        f'Name: {appointment.contact_name}' if appointment.contact_name else '',
        f'Email: {appointment.contact_email}' if appointment.contact_email else '',
        f'Phone: {appointment.contact_phone}' if appointment.contact_phone else '',
        f'Source: {appointment.source}' if appointment.source else '',
        f'Status: {appointment.status}' if appointment.status else '',
    ]
    return '\n'.join(line for line in lines if line)


def render_ics(appointments: Iterable[Appointment], now: datetime | None = None) -> str:
    stamp = format_ics_datetime(now or utc_now())
    lines = [
        'BEGIN:VCALENDAR',
        'VERSION:2.0',
        f'PRODID:{config.ICS_PRODUCT_ID}',
        'CALSCALE:GREGORIAN',
        'METHOD:PUBLISH',
    ]

    for appointment in appointments:
        lines.append('BEGIN:VEVENT')
        lines.append(f'UID:{appointment.id}@{ICS_UID_DOMAIN}')
        lines.append(f'DTSTAMP:{stamp}')
        lines.append(f'DTSTART:{format_ics_datetime(appointment.start_at)}')
        lines.append(f'DTEND:{format_ics_datetime(appointment.end_at)}')
        lines.append(f'SUMMARY:{escape_ics_text(appointment.title or "Appointment")}')
        description = _description(appointment)
        if description:
            lines.append(f'DESCRIPTION:{escape_ics_text(description)}')
        if appointment.status == 'cancelled':
            lines.append('STATUS:CANCELLED')
        lines.append('END:VEVENT')

    lines.append('END:VCALENDAR')
    return '\r\n'.join(lines) + '\r\n'
