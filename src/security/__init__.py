"""Security module: caller rate limiting and the audit trail."""

from src.security.audit import audit_on_event
from src.security.rate_limiter import rate_limiter

__all__ = ["audit_on_event", "rate_limiter"]
