# Overview: Request decorators establishing the acting principal and site for API routes.

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request


@dataclass(frozen=True)
class Principal:
    """Who is acting, and for which sawmill. Resolved upstream of this service."""
    principal_id: int
    site_id: int


def _parse_positive_header(req, name: str) -> int | None:
    raw = req.headers.get(name, "").strip()
    if not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None


def header_principal_resolver(req) -> Principal | None:
    """Default resolver: X-Principal-Id and X-Site-Id set by the gateway."""
    principal_id = _parse_positive_header(req, "X-Principal-Id")
    site_id = _parse_positive_header(req, "X-Site-Id")
    if principal_id is None or site_id is None:
        return None
    return Principal(principal_id=principal_id, site_id=site_id)


def require_principal(f):
    """
    Require a resolved principal and site.

    Sets the following Flask g attributes:
    - g.principal: The Principal
    - g.principal_id: shortcut for g.principal.principal_id
    - g.site_id: the site every operation of this request is scoped to

    Returns 401 when the resolver cannot produce both ids. Login, sessions and
    site selection happen before the request reaches us.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        resolver = current_app.config.get("PRINCIPAL_RESOLVER") or header_principal_resolver
        principal = resolver(request)
        if principal is None:
            return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401

        g.principal = principal
        g.principal_id = principal.principal_id
        g.site_id = principal.site_id

        return f(*args, **kwargs)

    return decorated_function
