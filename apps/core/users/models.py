from django.contrib.auth.models import AbstractUser, UserManager as DjangoUserManager
from django.db import models

from apps.core.schools.models import School


class UserManager(DjangoUserManager):
    def create_superuser(self, username, email=None, password=None, **extra_fields):
        # Platform operators pick a school per request instead of belonging to one.
        extra_fields.update(role=User.ROLE_SUPERADMIN, school=None)
        return super().create_superuser(username, email=email, password=password, **extra_fields)


class User(AbstractUser):
    ROLE_SUPERADMIN = 'superadmin'
    ROLE_SCHOOLADMIN = 'schooladmin'
    ROLE_ACCOUNTANT = 'accountant'
    ROLE_TEACHER = 'teacher'
    ROLE_PARENT = 'parent'
    ROLE_CHOICES = (
        (ROLE_SUPERADMIN, 'Super Admin'),
        (ROLE_SCHOOLADMIN, 'School Admin'),
        (ROLE_ACCOUNTANT, 'Accountant'),
        (ROLE_TEACHER, 'Teacher'),
        (ROLE_PARENT, 'Parent'),
    )

    # Billing (generate/void) and collection (payments, receipts, reports) roles.
    ADMIN_ROLES = (ROLE_SUPERADMIN, ROLE_SCHOOLADMIN)
    BURSAR_ROLES = ADMIN_ROLES + (ROLE_ACCOUNTANT,)

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_TEACHER)
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='users',
    )

    objects = UserManager()

    class Meta:
        indexes = [
            models.Index(fields=['role'], name='user_role_idx'),
            models.Index(fields=['school', 'role'], name='user_school_role_idx'),
        ]

    @property
    def is_platform_admin(self):
        return self.role == self.ROLE_SUPERADMIN

    def _bind_tenant(self):
        if self.is_superuser:
            self.role = self.ROLE_SUPERADMIN
        if self.is_platform_admin:
            self.school = None
        elif self.school_id is None:
            raise ValueError(f"User {self.username!r} with role {self.role!r} needs a school.")

    def save(self, *args, **kwargs):
        self._bind_tenant()
        super().save(*args, **kwargs)

    def __str__(self):
        school = self.school.code if self.school_id else 'platform'
        return f"{self.username} [{self.role}@{school}]"


class AuditLog(models.Model):
    """Append-only trail of ledger mutations and sensitive reads."""

    school = models.ForeignKey(
        School,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_events',
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_events',
    )
    action = models.CharField(max_length=100)  # e.g. FEES_PAYMENT_POSTED
    target_model = models.CharField(max_length=100, blank=True)
    target_id = models.CharField(max_length=64, blank=True)
    details = models.JSONField(default=dict, blank=True)

    method = models.CharField(max_length=10, blank=True)
    path = models.CharField(max_length=255, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['school', '-created_at'], name='audit_school_recent_idx'),
            models.Index(fields=['user', '-created_at'], name='audit_user_recent_idx'),
            models.Index(fields=['action'], name='audit_action_idx'),
        ]

    def __str__(self):
        target = f" {self.target_model}#{self.target_id}" if self.target_model else ''
        return f"{self.action}{target} by {self.user_id or 'system'}"
