from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from threatfeed.canonical import identity_key
from threatfeed.schemas import Indicator, IndicatorType, Severity
from threatfeed.utils.http import Http

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def http():
    return MagicMock(spec=Http)


def make_indicator(
    value="1.2.3.4",
    ioc_type=IndicatorType.IP,
    source="blocklist_de",
    severity=Severity.MEDIUM,
    confidence=60,
    tags=(),
    family=None,
    first_seen=NOW,
    last_seen=None,
    port=None,
    **extra,
):
    return Indicator(
        key=identity_key(ioc_type, value, port),
        type=ioc_type,
        value=value,
        port=port,
        source=source,
        sources=frozenset([source]),
        severity=severity,
        confidence=confidence,
        family=family,
        first_seen=first_seen,
        last_seen=last_seen or first_seen,
        tags=frozenset(tags),
        **extra,
    )


def later(minutes):
    return NOW + timedelta(minutes=minutes)
