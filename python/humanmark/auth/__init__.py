"""Actor identity module.

This module provides:
- Host actor token verification
- Actor middleware for FastAPI
- The Actor type consumed by the policy engine
"""

from humanmark.auth.middleware import Actor, ActorMiddleware, get_actor
from humanmark.auth.tokens import HostTokenVerifier, mint_host_token

__all__ = [
    "Actor",
    "ActorMiddleware",
    "get_actor",
    "HostTokenVerifier",
    "mint_host_token",
]
