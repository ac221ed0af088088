from functools import wraps

from flask_jwt_extended import get_jwt, verify_jwt_in_request

from tenant_billing.errors import PermissionDenied

TENANT_CLAIM = "tenant_id"
STAFF_CLAIM = "is_staff"


def current_tenant_id():
    """Tenant id from the verified access token's claims."""
    try:
        return int(get_jwt()[TENANT_CLAIM])
    except (KeyError, TypeError, ValueError):
        raise PermissionDenied("Token is not bound to a tenant") from None


def is_staff():
    return bool(get_jwt().get(STAFF_CLAIM))


def staff_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        if not is_staff():
            raise PermissionDenied("Staff access required")
        return fn(*args, **kwargs)
    return wrapper
