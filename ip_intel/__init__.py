"""IP Intel - on-demand IP enrichment with caching and per-client rate limiting."""

__version__ = "1.0.0"

from .cache import EnrichmentCache, SqliteRecordStore
from .enrichment import Aggregator, EnrichmentService
from .models import EnrichmentRecord, ErrorKind, LookupResult, StoreError
from .normalize import classify_ip
from .rate_limit import RateLimitResult, create_limiter, get_client_ip

__all__ = [
    "Aggregator",
    "EnrichmentCache",
    "EnrichmentRecord",
    "EnrichmentService",
    "ErrorKind",
    "LookupResult",
    "RateLimitResult",
    "SqliteRecordStore",
    "StoreError",
    "classify_ip",
    "create_limiter",
    "get_client_ip",
]
