from functools import wraps
from typing import Any, Callable

from flask import current_app, g, request

from api_errors import AuthenticationFailure, AuthorizationFailure, error_response
from auth_tokens import TokenError
from route_gateway import TOKEN_COOKIE_NAME, Role


def current_identity():
    codec = current_app.extensions["token_codec"]
    token = request.cookies.get(TOKEN_COOKIE_NAME)
    if not token:
        raise AuthenticationFailure("No session token provided.")
    return codec.verify(token)


def roles_required(*roles: Role) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    API gate for individual operations:
        @roles_required(Role.SALESMAN)
        def view(): ...

    Missing or invalid tokens answer 401; a valid token with the wrong role,
    an unverified account or a blocked account answers 403. The decoded
    identity is available as ``g.identity`` inside the view.
    """
    allowed = {Role(role) for role in roles}

    def decorator(view: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view)
        def wrapped(*args, **kwargs):
            try:
                identity = current_identity()
            except TokenError:
                return error_response(AuthenticationFailure())
            except AuthenticationFailure as exc:
                return error_response(exc)

            role = Role.parse(identity.role)
            if role not in allowed or not identity.is_verified or identity.is_blocked:
                return error_response(AuthorizationFailure())

            g.identity = identity
            return view(*args, **kwargs)

        return wrapped

    return decorator


admin_required = roles_required(Role.ADMIN)
