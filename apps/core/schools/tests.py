from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase
from django.utils import timezone

from apps.core.fees.exceptions import NotFoundError, PolicyError, TenantRequiredError
from apps.core.schools.models import School, Subscription
from apps.core.schools.services import (
    build_tenant_context,
    current_subscription,
    resolve_school_by_key,
    resolve_tenant_context,
)


class SchoolModelTests(TestCase):
    def test_code_is_generated_from_name(self):
        first = School.objects.create(name='Green Valley Academy')
        second = School.objects.create(name='Green Valley Academy')

        self.assertEqual(first.code, 'green_valley_academy')
        self.assertEqual(second.code, 'green_valley_academy_1')

    def test_explicit_code_is_kept(self):
        school = School.objects.create(name='Beta School', code='beta_main')
        self.assertEqual(school.code, 'beta_main')
        self.assertEqual(school.timezone, 'UTC')


class SubscriptionTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Plan School')

    def make(self, status, entitlements=None, **extra):
        return Subscription.objects.create(
            school=self.school,
            status=status,
            entitlements=entitlements or {},
            **extra,
        )

    def test_active_subscription_allows_granted_keys(self):
        subscription = self.make(Subscription.STATUS_ACTIVE, {Subscription.FEES_WRITE: True})
        self.assertTrue(subscription.can_write)
        self.assertTrue(subscription.allows(Subscription.FEES_WRITE))
        self.assertFalse(subscription.allows(Subscription.FEES_READ))

    def test_trial_reads_everything(self):
        subscription = self.make(Subscription.STATUS_TRIAL)
        self.assertTrue(subscription.allows(Subscription.FEES_READ))
        self.assertFalse(subscription.allows(Subscription.FEES_WRITE))

    def test_lapsed_subscription_is_read_only(self):
        subscription = self.make(
            Subscription.STATUS_PAST_DUE,
            {Subscription.FEES_READ: True, Subscription.FEES_WRITE: True},
        )
        self.assertFalse(subscription.can_write)
        self.assertTrue(subscription.allows(Subscription.FEES_READ))
        self.assertFalse(subscription.allows(Subscription.FEES_WRITE))

    def test_expired_period_blocks_writes(self):
        subscription = self.make(
            Subscription.STATUS_ACTIVE,
            {Subscription.FEES_WRITE: True},
            current_period_end=timezone.now() - timedelta(hours=1),
        )
        self.assertTrue(subscription.is_expired)
        self.assertFalse(subscription.allows(Subscription.FEES_WRITE))

    def test_newest_subscription_is_current(self):
        self.make(Subscription.STATUS_CANCELED)
        newest = self.make(Subscription.STATUS_ACTIVE)
        self.assertEqual(current_subscription(self.school), newest)


class TenantResolutionTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.user_model = get_user_model()
        self.school = School.objects.create(name='Alpha School', code='alpha')
        self.other_school = School.objects.create(name='Beta School', code='beta')
        self.accountant = self.user_model.objects.create_user(
            username='alpha_accountant',
            password='pass12345',
            role='accountant',
            school=self.school,
        )
        self.superadmin = self.user_model.objects.create_superuser('root', 'root@example.com', 'pass12345')

    def request_for(self, user, **headers):
        request = self.factory.get('/fees/invoices', **headers)
        request.user = user
        return request

    def test_school_user_is_bound_to_own_school(self):
        context = resolve_tenant_context(self.request_for(self.accountant, HTTP_X_SCHOOL_ID='beta'))
        self.assertEqual(context.school, self.school)
        self.assertEqual(context.role, 'accountant')
        self.assertEqual(context.path, '/fees/invoices')

    def test_superadmin_selects_school_by_code_or_id(self):
        by_code = resolve_tenant_context(self.request_for(self.superadmin, HTTP_X_SCHOOL_ID='beta'))
        self.assertEqual(by_code.school, self.other_school)

        by_id = resolve_tenant_context(self.request_for(self.superadmin, HTTP_X_TENANT_ID=str(self.school.pk)))
        self.assertEqual(by_id.school, self.school)

    def test_superadmin_without_selection_is_rejected(self):
        with self.assertRaises(TenantRequiredError):
            resolve_tenant_context(self.request_for(self.superadmin))
        with self.assertRaises(NotFoundError):
            resolve_tenant_context(self.request_for(self.superadmin, HTTP_X_SCHOOL_ID='missing'))

    def test_inactive_school_is_rejected(self):
        self.school.is_active = False
        self.school.save()
        with self.assertRaises(PolicyError) as ctx:
            resolve_tenant_context(self.request_for(self.accountant))
        self.assertEqual(ctx.exception.code, 'school_inactive')

    def test_resolve_school_by_key(self):
        self.assertEqual(resolve_school_by_key(' alpha '), self.school)
        self.assertEqual(resolve_school_by_key(str(self.other_school.pk)), self.other_school)
        self.assertIsNone(resolve_school_by_key(''))

    def test_context_carries_subscription(self):
        subscription = Subscription.objects.create(school=self.school, status=Subscription.STATUS_ACTIVE)
        context = build_tenant_context(school=self.school, actor=self.accountant)
        self.assertEqual(context.subscription, subscription)
        self.assertEqual(context.school_id, self.school.pk)
        self.assertEqual(context.actor_id, self.accountant.pk)
