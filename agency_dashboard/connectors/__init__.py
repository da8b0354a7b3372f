"""Provider clients for the dashboard refresh core"""


def default_provider_clients():
    """
    Build one client per provider kind.

    SDK imports stay local to this call.
    """
    from agency_dashboard.connectors.ga4_connector import GA4Client
    from agency_dashboard.connectors.dataforseo_connector import DataForSEOClient
    from agency_dashboard.models.kinds import ProviderKind

    return {
        ProviderKind.ANALYTICS: GA4Client(),
        ProviderKind.SEO: DataForSEOClient(),
    }
