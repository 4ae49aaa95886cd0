# Overview: Tenant-context decorator for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import TenantError
from .extensions import db
from .models import Organization


def _tenant_error(message: str):
    err = TenantError(message)
    return jsonify(err.to_dict()), err.http_status


def require_org(f):
    """
    Establish tenant context for a request.

    Authentication happens in front of this service; the gateway forwards
    the resolved organization and principal as headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.org_id: The organization ID (tenant context) - REQUIRED
    - g.actor: The acting principal (X-Actor, default "system")

    Returns 401 if:
    - No X-Org-Id header, or not an integer
    - Unknown organization
    - Organization deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-Org-Id", "").strip()
        if not raw:
            return _tenant_error("Organization context required")
        try:
            org_id = int(raw)
        except ValueError:
            return _tenant_error("Invalid organization id")

        org = db.session.get(Organization, org_id)
        if not org or not org.is_active:
            return _tenant_error("Unknown or inactive organization")

        g.org_id = org.id
        g.org = org
        g.actor = (request.headers.get("X-Actor") or "system").strip()[:128] or "system"

        return f(*args, **kwargs)

    return decorated_function
