"""
Request authentication and authorization pipeline.
"""

from .middleware import AuthMiddleware, RequestScope, current_scope

__all__ = ["AuthMiddleware", "RequestScope", "current_scope"]
