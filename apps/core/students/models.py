from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.academics.models import SchoolClass
from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


class Student(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_TRANSFERRED = 'transferred'
    STATUS_ALUMNI = 'alumni'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'),
        (STATUS_TRANSFERRED, 'Transferred'),
        (STATUS_ALUMNI, 'Alumni'),
    )

    GENDER_CHOICES = (
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    )

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='students')
    objects = SchoolManager()

    admission_number = models.CharField(max_length=50)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    admission_date = models.DateField(default=timezone.localdate)
    current_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='students',
    )
    guardian_phone = models.CharField(max_length=20, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    is_active = models.BooleanField(default=True)
    is_archived = models.BooleanField(default=False)
    archived_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['admission_number', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'admission_number'],
                name='unique_student_admission_number_per_school',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'status'], name='student_school_status_idx'),
            models.Index(fields=['school', 'current_class'], name='student_school_class_idx'),
        ]

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def clean(self):
        super().clean()
        if self.current_class_id and self.current_class.school_id != self.school_id:
            raise ValidationError({'current_class': 'Selected class does not belong to your school.'})

    def delete(self, *args, **kwargs):
        # Invoices keep referencing archived students.
        if self.is_archived:
            return
        self.is_active = False
        self.is_archived = True
        self.status = self.STATUS_ALUMNI
        self.archived_at = timezone.now()
        self.save(update_fields=['is_active', 'is_archived', 'status', 'archived_at'])

    def __str__(self):
        return f"{self.admission_number} - {self.full_name}"
