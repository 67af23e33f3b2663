from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase

from apps.core.fees.exceptions import EntitlementError, PolicyError
from apps.core.schools.models import School, Subscription
from apps.core.schools.services import build_tenant_context
from apps.core.users.audit import log_audit_event
from apps.core.users.models import AuditLog
from apps.core.users.permissions import BURSAR_ROLES, entitlement, role_in


class UserModelTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.school = School.objects.create(name='Alpha School')

    def test_school_user_requires_school(self):
        with self.assertRaises(ValueError):
            self.user_model.objects.create_user(username='orphan', password='pass12345', role='accountant')

    def test_superadmin_has_no_school(self):
        user = self.user_model.objects.create_superuser('root', 'root@example.com', 'pass12345')
        self.assertEqual(user.role, 'superadmin')
        self.assertIsNone(user.school)


class PermissionTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.user_model = get_user_model()
        self.school = School.objects.create(name='Guard School')
        self.teacher = self.user_model.objects.create_user(
            username='teacher1',
            password='pass12345',
            role='teacher',
            school=self.school,
        )
        self.accountant = self.user_model.objects.create_user(
            username='accountant1',
            password='pass12345',
            role='accountant',
            school=self.school,
        )

    def view_for(self, user, subscription=None):
        request = self.factory.post('/fees/payments')
        request.user = user
        if subscription is not None:
            Subscription.objects.create(school=self.school, **subscription)
        view = SimpleNamespace(tenant=build_tenant_context(school=self.school, actor=user, request=request))
        return request, view

    def test_role_in(self):
        permission = role_in(*BURSAR_ROLES)()
        request, view = self.view_for(self.accountant)
        self.assertTrue(permission.has_permission(request, view))

        request, view = self.view_for(self.teacher)
        self.assertFalse(permission.has_permission(request, view))

    def test_entitlement_granted(self):
        request, view = self.view_for(
            self.accountant,
            {'status': Subscription.STATUS_ACTIVE, 'entitlements': {Subscription.FEES_WRITE: True}},
        )
        self.assertTrue(entitlement(Subscription.FEES_WRITE)().has_permission(request, view))

    def test_entitlement_missing(self):
        request, view = self.view_for(self.accountant, {'status': Subscription.STATUS_ACTIVE})
        with self.assertRaises(EntitlementError) as ctx:
            entitlement(Subscription.FEES_WRITE)().has_permission(request, view)
        self.assertEqual(ctx.exception.as_payload()['entitlement'], Subscription.FEES_WRITE)

    def test_read_only_subscription(self):
        request, view = self.view_for(
            self.accountant,
            {'status': Subscription.STATUS_PAST_DUE, 'entitlements': {Subscription.FEES_WRITE: True}},
        )
        with self.assertRaises(PolicyError) as ctx:
            entitlement(Subscription.FEES_WRITE)().has_permission(request, view)
        self.assertEqual(ctx.exception.status_code, 402)
        self.assertEqual(ctx.exception.code, 'read_only')

    def test_read_allowed_on_read_only_subscription(self):
        request, view = self.view_for(
            self.accountant,
            {'status': Subscription.STATUS_PAST_DUE, 'entitlements': {Subscription.FEES_READ: True}},
        )
        self.assertTrue(entitlement(Subscription.FEES_READ)().has_permission(request, view))


class AuditLogTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Audit School')
        self.user = get_user_model().objects.create_user(
            username='bursar',
            password='pass12345',
            role='accountant',
            school=self.school,
        )
        request = RequestFactory().post('/fees/payments', REMOTE_ADDR='10.0.0.7')
        self.context = build_tenant_context(school=self.school, actor=self.user, request=request)

    def test_event_records_actor_request_and_details(self):
        log = log_audit_event(
            self.context,
            'FEES_PAYMENT_POSTED',
            target=self.school,
            details={'amount': Decimal('12.50')},
        )
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.school, self.school)
        self.assertEqual(log.target_model, 'School')
        self.assertEqual(log.details, {'amount': '12.50'})
        self.assertEqual(log.method, 'POST')
        self.assertEqual(log.ip_address, '10.0.0.7')

    def test_sink_failure_is_logged_not_raised(self):
        with mock.patch.object(AuditLog.objects, 'create', side_effect=RuntimeError('disk full')):
            with self.assertLogs('apps.core.users.audit', level='ERROR'):
                self.assertIsNone(log_audit_event(self.context, 'FEES_RECEIPT_VIEWED'))
