"""Domain enumerations for provider discovery, health and error handling."""

from __future__ import annotations

import enum


class HealthStatus(str, enum.Enum):
    """Health state of a discovered provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class CostTier(str, enum.Enum):
    BUDGET = "budget"
    STANDARD = "standard"
    PREMIUM = "premium"


class DiscoverySource(str, enum.Enum):
    """How a provider entered the registry."""

    MANUAL = "manual"
    API_DISCOVERY = "api-discovery"
    SERVICE_MESH = "service-mesh"


class AuthType(str, enum.Enum):
    """Authentication scheme used when probing a provider."""

    NONE = "none"
    BEARER = "bearer"
    API_KEY = "api-key"


class Capability(str, enum.Enum):
    """Feature flags a provider may advertise."""

    STREAMING = "streaming"
    FUNCTION_CALLING = "function_calling"
    VISION = "vision"
    CODE_GENERATION = "code_generation"
    REASONING = "reasoning"
    MULTIMODAL = "multimodal"


class ErrorPattern(str, enum.Enum):
    """Taxonomy bucket assigned to a failure; drives retry/fallback policy."""

    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    SERVER_ERROR = "SERVER_ERROR"
    MODEL_OVERLOADED = "MODEL_OVERLOADED"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NO_OBJECT_GENERATED = "NO_OBJECT_GENERATED"
    NO_SUCH_MODEL = "NO_SUCH_MODEL"
    NO_SUCH_PROVIDER = "NO_SUCH_PROVIDER"
    INVALID_TOOL_INPUT = "INVALID_TOOL_INPUT"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorKind(str, enum.Enum):
    """Closed set of failure kinds reported by the model-call boundary."""

    API_CALL = "api_call"
    INVALID_ARGUMENT = "invalid_argument"
    NO_OBJECT_GENERATED = "no_object_generated"
    NO_SUCH_MODEL = "no_such_model"
    NO_SUCH_PROVIDER = "no_such_provider"
    INVALID_TOOL_INPUT = "invalid_tool_input"
    TIMEOUT = "timeout"
    NETWORK = "network"


class RetryStrategy(str, enum.Enum):
    """Backoff curve between retry attempts."""

    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class Likelihood(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
