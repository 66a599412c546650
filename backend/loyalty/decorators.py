# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import AuthenticationError, AuthorizationError
from .permissions import has_at_least_role
from .services import auth_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User. Raises AuthenticationError
    (401) if the Authorization header is missing, the token is unknown,
    expired or revoked, or the account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            raise AuthenticationError()

        token = auth_header.split(" ", 1)[1]
        user = auth_service.validate_session(token)

        if not user:
            raise AuthenticationError("Invalid or expired token")

        g.current_user = user
        g.auth_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require the authenticated user to hold at least role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                raise AuthenticationError()

            if not has_at_least_role(g.current_user, role):
                raise AuthorizationError(f"Permission denied: requires {role}")

            return f(*args, **kwargs)

        return decorated_function
    return decorator
