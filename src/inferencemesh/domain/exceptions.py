"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from inferencemesh.domain.enums import ErrorKind

if TYPE_CHECKING:
    from inferencemesh.shared.providers.types import ErrorClassification


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Configuration ────────────────────────────────────────────
class ConfigurationError(DomainError):
    """Fatal misconfiguration; never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")


class ProviderNotConfiguredError(ConfigurationError):
    def __init__(self, provider_id: str) -> None:
        super().__init__(f"No endpoint configuration found for provider: {provider_id}")
        self.provider_id = provider_id


class DiscoveryFailedError(DomainError):
    """A discovery pass could not reach any configured provider."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DISCOVERY_FAILED")


# ── Model-call boundary ─────────────────────────────────────
class ProviderCallError(DomainError):
    """Failure reported by the model-call collaborator.

    ``kind`` is the closed tag the classifier switches on.  ``status_code``
    and ``retry_after`` (seconds) are only meaningful for ``API_CALL``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
        provider: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message, code=f"PROVIDER_{kind.value.upper()}")
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        self.provider = provider
        self.model = model

    @classmethod
    def api_call(
        cls,
        status_code: int,
        message: str = "",
        *,
        retry_after: float | None = None,
        provider: str | None = None,
        model: str | None = None,
    ) -> ProviderCallError:
        return cls(
            ErrorKind.API_CALL,
            message or f"HTTP {status_code}",
            status_code=status_code,
            retry_after=retry_after,
            provider=provider,
            model=model,
        )


# ── Retry / recovery ────────────────────────────────────────
class OperationAbortedError(DomainError):
    """The caller's abort signal or deadline stopped an operation."""

    def __init__(self, message: str = "Operation aborted") -> None:
        super().__init__(message, code="OPERATION_ABORTED")


class RecoveryFailedError(DomainError):
    """Retries and fallbacks are exhausted.

    Only the user-facing message is exposed; the technical cause stays on
    ``__cause__`` for logging.
    """

    def __init__(self, user_message: str, classification: ErrorClassification | None = None) -> None:
        super().__init__(user_message, code="RECOVERY_FAILED")
        self.classification = classification
