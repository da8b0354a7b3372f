"""Database models for the agency dashboard refresh core"""

from agency_dashboard.models.connection import (
    ProviderConnection,
    ThrottleWindow
)

from agency_dashboard.models.snapshot import MetricSnapshot

from agency_dashboard.models.kinds import (
    ProviderKind,
    DataKind,
    DATA_KINDS_BY_PROVIDER,
    RANGE_INDEPENDENT_KEY
)

__all__ = [
    "ProviderConnection",
    "ThrottleWindow",
    "MetricSnapshot",
    "ProviderKind",
    "DataKind",
    "DATA_KINDS_BY_PROVIDER",
    "RANGE_INDEPENDENT_KEY",
]
