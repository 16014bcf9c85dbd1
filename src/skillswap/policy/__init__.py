"""Exchange policy configuration."""

from skillswap.policy.resolver import PolicyResolver, SessionDefaults

__all__ = ["PolicyResolver", "SessionDefaults"]
