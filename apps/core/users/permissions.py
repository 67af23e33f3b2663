from rest_framework.permissions import BasePermission

from apps.core.fees.exceptions import EntitlementError, PolicyError
from apps.core.schools.services import resolve_tenant_context
from apps.core.users.models import User

ADMIN_ROLES = User.ADMIN_ROLES
BURSAR_ROLES = User.BURSAR_ROLES


class TenantResolved(BasePermission):
    """Resolves the acting school once and stores it on the view as ``view.tenant``."""

    def has_permission(self, request, view):
        if getattr(view, 'tenant', None) is None:
            view.tenant = resolve_tenant_context(request)
        return True


def role_in(*roles):
    allowed = frozenset(roles)

    class RoleIn(BasePermission):
        message = 'Your role is not allowed to perform this action.'

        def has_permission(self, request, view):
            user = request.user
            return bool(user and user.is_authenticated and user.role in allowed)

    RoleIn.__name__ = f"RoleIn_{'_'.join(sorted(allowed))}"
    return RoleIn


def entitlement(key):
    class HasEntitlement(BasePermission):
        def has_permission(self, request, view):
            tenant = getattr(view, 'tenant', None)
            if tenant is None:
                tenant = view.tenant = resolve_tenant_context(request)

            subscription = tenant.subscription
            if subscription is None:
                raise EntitlementError(f'Feature locked: missing entitlement {key}', entitlement=key)

            if not key.endswith('_READ') and not subscription.can_write:
                raise PolicyError(
                    'Subscription does not allow writes.',
                    code='read_only',
                    status_code=402,
                    subscriptionStatus=subscription.status,
                )

            if not subscription.allows(key):
                raise EntitlementError(f'Feature locked: missing entitlement {key}', entitlement=key)
            return True

    HasEntitlement.__name__ = f'HasEntitlement_{key}'
    return HasEntitlement
