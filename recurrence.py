"""
Recurrence rules for repeating tasks.

A rule is the compact text the API stores in ``recurrence_rule``::

    FREQ=<DAILY|WEEKLY|MONTHLY|YEARLY>[;INTERVAL=<n>][;BYDAY=<D,D,...>][;BYMONTHDAY=<n>]

Only one pattern per frequency is supported: weekdays for WEEKLY and a
single day of the month for MONTHLY. "Second Tuesday" style rules are not.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

FREQUENCIES = ('DAILY', 'WEEKLY', 'MONTHLY', 'YEARLY')
WEEKDAYS = ('SU', 'MO', 'TU', 'WE', 'TH', 'FR', 'SA')

FREQUENCY_CHOICES = [('', 'Does not repeat'), ('DAILY', 'Daily'), ('WEEKLY', 'Weekly'),
                     ('MONTHLY', 'Monthly'), ('YEARLY', 'Yearly')]
WEEKDAY_CHOICES = [('SU', 'Sun'), ('MO', 'Mon'), ('TU', 'Tue'), ('WE', 'Wed'),
                   ('TH', 'Thu'), ('FR', 'Fri'), ('SA', 'Sat')]

_UNITS = {'DAILY': 'day', 'WEEKLY': 'week', 'MONTHLY': 'month', 'YEARLY': 'year'}


@dataclass
class RecurrenceSpec:
    frequency: str = ''
    interval: int = 1
    days_of_week: List[str] = field(default_factory=list)
    day_of_month: int = 1

    @property
    def is_recurring(self) -> bool:
        return bool(self.frequency)


def normalize(spec: RecurrenceSpec) -> RecurrenceSpec:
    """Reset interval, weekdays and day of month when the task does not repeat."""
    if not spec.frequency:
        return RecurrenceSpec()
    return spec


def encode(spec: RecurrenceSpec) -> Optional[str]:
    if not spec.frequency:
        return None

    clauses = [f'FREQ={spec.frequency}']
    if spec.interval > 1:
        clauses.append(f'INTERVAL={spec.interval}')
    if spec.frequency == 'WEEKLY' and spec.days_of_week:
        clauses.append('BYDAY=' + ','.join(spec.days_of_week))
    if spec.frequency == 'MONTHLY' and 1 <= spec.day_of_month <= 31:
        clauses.append(f'BYMONTHDAY={spec.day_of_month}')
    return ';'.join(clauses)


def _int_or_default(key, value, rule):
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning('Ignoring malformed %s=%r in recurrence rule %r', key, value, rule)
        return 1


def decode(rule: Optional[str]) -> RecurrenceSpec:
    """Parse a rule string. Never raises; bad numbers fall back to 1."""
    spec = RecurrenceSpec()
    if not rule:
        return spec

    for clause in rule.split(';'):
        key, _, value = clause.partition('=')
        key = key.strip().upper()
        value = value.strip()
        if key == 'FREQ':
            spec.frequency = value
        elif key == 'INTERVAL':
            spec.interval = _int_or_default(key, value, rule)
        elif key == 'BYDAY':
            spec.days_of_week = [day for day in value.split(',') if day]
        elif key == 'BYMONTHDAY':
            spec.day_of_month = _int_or_default(key, value, rule)
    return spec


def is_recurring(spec: RecurrenceSpec) -> bool:
    return spec.is_recurring


def describe(spec: Optional[RecurrenceSpec]) -> str:
    if spec is None or not spec.frequency:
        return 'Does not repeat'

    unit = _UNITS.get(spec.frequency, spec.frequency.lower())
    if spec.interval > 1:
        text = f'Every {spec.interval} {unit}s'
    else:
        text = f'Every {unit}'
    if spec.frequency == 'WEEKLY' and spec.days_of_week:
        text += ' on ' + ', '.join(spec.days_of_week)
    elif spec.frequency == 'MONTHLY' and 1 <= spec.day_of_month <= 31:
        text += f' on day {spec.day_of_month}'
    return text
