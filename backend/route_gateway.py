"""Path-level access control for the role-restricted areas.

``decide_route`` is a pure function of the request path and the raw cookie
value. ``install_gateway`` wires it into a Flask app as a ``before_request``
hook so every request under a restricted prefix is checked before any view
runs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from flask import current_app, g, redirect, request

from auth_tokens import Identity, TokenCodec, TokenError

PUBLIC_ENTRY_POINT = "/"
TOKEN_COOKIE_NAME = "token"


class Role(str, Enum):
    ADMIN = "admin"
    SHOP = "shop"
    SALESMAN = "salesman"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


# Every role must appear here; ``None`` means the role has no restricted area.
ROLE_AREAS: Dict[Role, Optional[str]] = {
    Role.ADMIN: "/admin",
    Role.SHOP: None,
    Role.SALESMAN: "/salesman",
}

_unmapped_roles = set(Role) - set(ROLE_AREAS)
if _unmapped_roles:
    raise RuntimeError(
        "Roles without an area mapping: "
        + ", ".join(sorted(role.value for role in _unmapped_roles))
    )

RESTRICTED_PREFIXES: Dict[str, Role] = {
    area: role for role, area in ROLE_AREAS.items() if area
}


@dataclass(frozen=True)
class RouteDecision:
    forward: bool
    location: Optional[str] = None
    identity: Optional[Identity] = None

    @classmethod
    def allow(cls, identity: Optional[Identity] = None) -> "RouteDecision":
        return cls(forward=True, identity=identity)

    @classmethod
    def redirect_to(cls, location: str) -> "RouteDecision":
        return cls(forward=False, location=location)


def _path_under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def restricted_prefix_for(path: str) -> Optional[str]:
    for prefix in RESTRICTED_PREFIXES:
        if _path_under(path, prefix):
            return prefix
    return None


def area_for(role: Optional[Role]) -> Optional[str]:
    if role is None:
        return None
    return ROLE_AREAS[role]


def decide_route(path: str, token: Optional[str], codec: TokenCodec) -> RouteDecision:
    prefix = restricted_prefix_for(path)
    if prefix is None:
        return RouteDecision.allow()

    if not token:
        return RouteDecision.redirect_to(PUBLIC_ENTRY_POINT)

    try:
        identity = codec.verify(token)
    except TokenError:
        return RouteDecision.redirect_to(PUBLIC_ENTRY_POINT)

    if not identity.is_verified or identity.is_blocked:
        return RouteDecision.redirect_to(PUBLIC_ENTRY_POINT)

    own_area = area_for(Role.parse(identity.role))
    if not own_area:
        return RouteDecision.redirect_to(PUBLIC_ENTRY_POINT)

    if prefix != own_area:
        return RouteDecision.redirect_to(own_area)

    return RouteDecision.allow(identity)


def landing_for(token: Optional[str], codec: TokenCodec) -> Optional[str]:
    """Where the public root should send an already signed-in caller, if anywhere."""
    if not token:
        return None
    try:
        identity = codec.verify(token)
    except TokenError:
        return None
    if not identity.is_verified or identity.is_blocked:
        return None
    return area_for(Role.parse(identity.role))


def install_gateway(app) -> None:
    @app.before_request
    def enforce_role_areas():
        codec = current_app.extensions["token_codec"]
        decision = decide_route(
            request.path, request.cookies.get(TOKEN_COOKIE_NAME), codec
        )
        if decision.forward:
            if decision.identity is not None:
                g.identity = decision.identity
            return None
        current_app.logger.info(
            "Gateway redirected %s to %s", request.path, decision.location
        )
        return redirect(decision.location)
