from .aggregator import Aggregator, Settled, merge_record, settle
from .base import Source, SourceContext, SourceUnavailable
from .ip_api import IpApiResult, IpApiSource
from .nominatim import NominatimResult, NominatimSource
from .rdap import RdapResult, RdapSource
from .service import EnrichmentService

__all__ = [
    "Aggregator",
    "EnrichmentService",
    "IpApiResult",
    "IpApiSource",
    "NominatimResult",
    "NominatimSource",
    "RdapResult",
    "RdapSource",
    "Settled",
    "Source",
    "SourceContext",
    "SourceUnavailable",
    "merge_record",
    "settle",
]
