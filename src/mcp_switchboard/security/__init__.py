"""Rate limiting and audit logging."""

from mcp_switchboard.security.audit import AuditLogger, redact
from mcp_switchboard.security.ratelimiter import RateLimiter, RateLimitExceeded

__all__ = ["AuditLogger", "RateLimitExceeded", "RateLimiter", "redact"]
