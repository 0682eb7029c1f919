"""
Quote Gateway Exceptions

Exception hierarchy for subscription sessions and credential refresh.
"""

from __future__ import annotations


class QuoteGatewayError(Exception):
    """Base exception for all quote gateway errors."""

    pass


# --- Credential refresh ---


class RefreshError(QuoteGatewayError):
    """Raised when a fresh access token could not be obtained."""

    pass


class NotConfigured(RefreshError):
    """Raised when no account username/password is configured for refresh."""

    pass


class AuthServiceError(RefreshError):
    """Raised when the auth endpoint is unreachable or answers with a non-2xx status."""

    def __init__(self, status: int | None, body: str) -> None:
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"Auth service unreachable: {body}")
        else:
            super().__init__(f"Auth service returned {status}: {body}")


class InvalidResponse(RefreshError):
    """Raised when a successful auth response carries no token."""

    pass


# --- Upstream transport ---


class TransportError(QuoteGatewayError):
    """Raised when the upstream broker connection, subscription or stream fails."""

    pass


class AuthSignatureError(TransportError):
    """Transport error whose message identifies rejected credentials."""

    pass


class SubscriptionRejected(TransportError):
    """Raised when the broker acknowledges a subscribe request with a failure code."""

    pass


class SessionTimeout(QuoteGatewayError):
    """Base class for session deadlines."""

    pass


class AckTimeout(SessionTimeout):
    """Raised when the broker does not acknowledge connect+subscribe in time."""

    pass


class DataTimeout(SessionTimeout):
    """Raised when no data message arrives after the subscription is acknowledged."""

    pass


class MalformedPayload(QuoteGatewayError):
    """Raised when a broker data message cannot be parsed into a quote."""

    pass
