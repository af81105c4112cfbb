"""Middleware components for PaperTrail hosts."""

from papertrail.middleware.actor import ACTOR_HEADER, actor_context_middleware

__all__ = ["ACTOR_HEADER", "actor_context_middleware"]
