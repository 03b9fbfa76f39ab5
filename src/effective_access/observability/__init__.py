"""
effective_access.observability

Observability package.

Responsibilities:
- Structured logging configuration and logger access.
- Request-scoped logging context for the HTTP API.
"""

# Package marker.
