from __future__ import annotations


class SettlementError(RuntimeError):
    """Base class for settlement provider errors."""


class SettlementConfigurationError(SettlementError):
    """Raised when no gateway is configured for a provider."""


class SettlementRejectedError(SettlementError):
    """Raised when the provider answers with an error or ``RESULT: false``."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SettlementTimeoutError(SettlementError):
    """Raised when the provider did not answer in time; the outcome is unknown."""
