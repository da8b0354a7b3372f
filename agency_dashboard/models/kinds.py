"""
Provider and data-kind identifiers shared by stores, services and routers.
"""
from enum import Enum
from typing import Dict, List


class ProviderKind(str, Enum):
    """External data providers a client can connect"""
    ANALYTICS = "analytics"  # Google Analytics 4
    SEO = "seo"  # DataForSEO


class DataKind(str, Enum):
    """Categories of cached provider metrics, each with its own cooldown"""
    PAGE_METRICS = "page_metrics"
    BACKLINKS = "backlinks"
    ANALYTICS_SUMMARY = "analytics_summary"


DATA_KINDS_BY_PROVIDER: Dict[ProviderKind, List[DataKind]] = {
    ProviderKind.ANALYTICS: [DataKind.ANALYTICS_SUMMARY],
    ProviderKind.SEO: [DataKind.PAGE_METRICS, DataKind.BACKLINKS],
}

# SEO snapshots describe the site as it is now, not a reporting window
RANGE_INDEPENDENT_KEY = "current"


def provider_for(data_kind: DataKind) -> ProviderKind:
    """Return the provider that sources a data kind."""
    for provider, kinds in DATA_KINDS_BY_PROVIDER.items():
        if data_kind in kinds:
            return provider
    raise ValueError(f"No provider sources {data_kind}")


def is_range_independent(data_kind: DataKind) -> bool:
    return data_kind is not DataKind.ANALYTICS_SUMMARY
