from uuid import uuid4

from django.db import models
from django.utils import timezone
from django.utils.text import slugify


class School(models.Model):
    uuid = models.UUIDField(default=uuid4, editable=False, db_index=True)
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=40, unique=True, null=True, blank=True)
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    timezone = models.CharField(max_length=64, default='UTC')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        indexes = [
            models.Index(fields=['code'], name='school_code_idx'),
            models.Index(fields=['is_active'], name='school_active_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self.code:
            base_code = slugify(self.name).replace('-', '_')[:30] or 'school'
            candidate = base_code
            sequence = 1
            while School.objects.exclude(pk=self.pk).filter(code=candidate).exists():
                suffix = f'_{sequence}'
                candidate = f'{base_code[:30 - len(suffix)]}{suffix}'
                sequence += 1
            self.code = candidate

        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.code})"


class Subscription(models.Model):
    """Commercial plan of a school; the newest row is the one in force."""

    STATUS_TRIAL = 'TRIAL'
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_PAST_DUE = 'PAST_DUE'
    STATUS_CANCELED = 'CANCELED'
    STATUS_CHOICES = (
        (STATUS_TRIAL, 'Trial'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PAST_DUE, 'Past Due'),
        (STATUS_CANCELED, 'Canceled'),
    )
    WRITE_ENABLED_STATUSES = {STATUS_TRIAL, STATUS_ACTIVE}

    FEES_READ = 'FEES_READ'
    FEES_WRITE = 'FEES_WRITE'

    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='subscriptions',
    )
    plan_code = models.CharField(max_length=30, default='FREE')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_TRIAL)
    entitlements = models.JSONField(default=dict, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['school', '-created_at'], name='subs_school_recent_idx'),
        ]

    @property
    def is_expired(self):
        return bool(self.current_period_end and self.current_period_end < timezone.now())

    @property
    def can_write(self):
        return self.status in self.WRITE_ENABLED_STATUSES and not self.is_expired

    def allows(self, key):
        if key.endswith('_READ') and self.status == self.STATUS_TRIAL:
            return True
        if not key.endswith('_READ') and not self.can_write:
            return False
        return bool((self.entitlements or {}).get(key))

    def __str__(self):
        return f"{self.school.code} {self.plan_code} ({self.status})"
