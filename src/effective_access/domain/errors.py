"""
effective_access.domain.errors

Error taxonomy for resolution and querying.

Responsibilities:
- Separate retryable upstream failures from terminal ones.
- Provide a user-facing failure that reports progress counts, not transport detail.
"""

from __future__ import annotations


class AccessQueryError(Exception):
    pass


class TransientQueryError(AccessQueryError):
    """
    Retryable upstream failure (network blip, 5xx, throttling).
    """

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimitedError(TransientQueryError):
    """
    Throttling signal from an upstream service. `retry_after` carries the
    server-suggested delay in seconds when one was provided.
    """


class UpstreamError(AccessQueryError):
    """
    Upstream rejected the request (4xx other than throttling). Not retried.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidPrincipalId(AccessQueryError, ValueError):
    def __init__(self, principal_id: str) -> None:
        super().__init__(f"not a valid principal id: {principal_id!r}")
        self.principal_id = principal_id


class ResolutionAborted(AccessQueryError):
    pass


class RetriesExhausted(AccessQueryError):
    def __init__(self, operation: str, *, attempts: int) -> None:
        super().__init__(f"{operation} failed after {attempts} attempts")
        self.operation = operation
        self.attempts = attempts


class UnresolvableIdentity(AccessQueryError):
    def __init__(self, object_id: str) -> None:
        super().__init__(f"identity {object_id} could not be looked up in the directory")
        self.object_id = object_id


class AccessResolutionFailed(AccessQueryError):
    """
    Terminal failure of an end-to-end resolution.

    The message only reports which stage failed and how far group resolution
    got; the low-level cause is kept on `__cause__` for logs.
    """

    def __init__(self, *, stage: str, resolved_groups: int, failed_groups: int) -> None:
        super().__init__(
            f"access resolution failed while {stage.replace('_', ' ')}: "
            f"{resolved_groups} groups resolved, {failed_groups} failed"
        )
        self.stage = stage
        self.resolved_groups = resolved_groups
        self.failed_groups = failed_groups


# --- Module Notes -----------------------------------------------------------
# Clients raise TransientQueryError/RateLimitedError/UpstreamError; the resolver and
# the query client own retries; the service layer owns AccessResolutionFailed.
