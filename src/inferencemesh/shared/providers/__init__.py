"""Provider resilience core.

Provides discovery and health monitoring, error classification, classified
retries with fallbacks, and rolling per-model metrics for any set of
interchangeable inference providers.
"""

from inferencemesh.shared.providers.types import (
    AggregatedMetrics,
    DiscoveryConfig,
    ErrorClassification,
    ErrorLikelihood,
    HealthTransition,
    ProbeResult,
    ProviderMetricsSample,
    RetryPolicy,
    RetryResult,
)
from inferencemesh.shared.providers.health import ProviderHealthTracker
from inferencemesh.shared.providers.classifier import ErrorClassifier, ErrorStatistics, classify
from inferencemesh.shared.providers.metrics import MetricsConfig, ProviderMetricsCollector
from inferencemesh.shared.providers.recovery import RetryEngine
from inferencemesh.shared.providers.discovery import ProviderDiscoveryService

__all__ = [
    "AggregatedMetrics",
    "DiscoveryConfig",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorLikelihood",
    "ErrorStatistics",
    "HealthTransition",
    "MetricsConfig",
    "ProbeResult",
    "ProviderDiscoveryService",
    "ProviderHealthTracker",
    "ProviderMetricsCollector",
    "ProviderMetricsSample",
    "RetryEngine",
    "RetryPolicy",
    "RetryResult",
    "classify",
]
