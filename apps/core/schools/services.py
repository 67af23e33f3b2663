from __future__ import annotations

from dataclasses import dataclass

from apps.core.fees.exceptions import NotFoundError, PolicyError, TenantRequiredError
from apps.core.schools.models import School, Subscription


@dataclass(frozen=True)
class TenantContext:
    """Acting school, actor and request metadata for one request.

    Built once at the edge and passed explicitly into every ledger call.
    """

    school: School
    actor: object = None
    role: str = ''
    subscription: Subscription | None = None
    method: str = ''
    path: str = ''
    ip_address: str | None = None

    @property
    def school_id(self):
        return self.school.pk

    @property
    def actor_id(self):
        return getattr(self.actor, 'pk', None)

    def describe(self):
        return f"school={self.school_id} actor={self.actor_id or '-'}"


def normalize_school_key(key):
    if key is None:
        return ''
    return str(key).strip()


def resolve_school_by_key(key):
    normalized = normalize_school_key(key)
    if not normalized:
        return None

    if normalized.isdigit():
        school = School.objects.filter(pk=int(normalized)).first()
        if school:
            return school

    return School.objects.filter(code=normalized).first()


def current_subscription(school):
    return Subscription.objects.filter(school=school).order_by('-created_at', '-id').first()


def _extract_ip(request):
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def build_tenant_context(*, school, actor=None, request=None):
    return TenantContext(
        school=school,
        actor=actor,
        role=getattr(actor, 'role', '') or '',
        subscription=current_subscription(school),
        method=getattr(request, 'method', '') or '',
        path=getattr(request, 'path', '') or '',
        ip_address=_extract_ip(request) if request is not None else None,
    )


def resolve_tenant_context(request):
    """
    Resolves the acting school for an authenticated request.
    Priority:
    1) school bound to the user account
    2) X-School-Id header (id or code), superadmin only
    """
    user = getattr(request, 'user', None)
    if not user or not user.is_authenticated:
        raise TenantRequiredError('Authentication required before tenant resolution.')

    if user.is_platform_admin:
        header_key = request.headers.get('X-School-Id') or request.headers.get('X-Tenant-Id')
        if not normalize_school_key(header_key):
            raise TenantRequiredError()
        school = resolve_school_by_key(header_key)
        if not school:
            raise NotFoundError('School not found.', code='school_not_found')
    else:
        school = user.school
        if not school:
            raise TenantRequiredError('No school linked to this account.')

    if not school.is_active:
        raise PolicyError('School inactive.', code='school_inactive', status_code=403)

    return build_tenant_context(school=school, actor=user, request=request)
