"""
Collect component - beacon ingestion pipeline.
"""

from ._impl import (
    CollectConfig,
    CollectPipeline,
    build_event,
    create_collect_pipeline,
    extract_client_ip,
    origin_allowed,
)
from .component import build_config, run_collect
from .models import (
    CollectOutput,
    CollectPayload,
    CollectStatus,
    CollectValidationError,
    GeoFacts,
    ParsedUserAgent,
    RequestFacts,
)
from .ports import CollectStorePort, GeoLocatorPort, RateLimiterPort, UserAgentParserPort

__all__ = [
    # Entry points
    "run_collect",
    "build_config",
    # Pipeline
    "CollectConfig",
    "CollectPipeline",
    "create_collect_pipeline",
    "build_event",
    "extract_client_ip",
    "origin_allowed",
    # Models
    "CollectOutput",
    "CollectPayload",
    "CollectStatus",
    "CollectValidationError",
    "GeoFacts",
    "ParsedUserAgent",
    "RequestFacts",
    # Ports
    "CollectStorePort",
    "GeoLocatorPort",
    "RateLimiterPort",
    "UserAgentParserPort",
]
