from django.core.exceptions import ValidationError
from django.db import models

from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


class SchoolClass(models.Model):
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='classes',
    )
    objects = SchoolManager()

    name = models.CharField(max_length=50)  # e.g. Grade 4, Form 2
    stream = models.CharField(max_length=30, blank=True)  # e.g. East, Blue
    code = models.CharField(max_length=20, blank=True)
    year = models.PositiveIntegerField(null=True, blank=True)
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'name', 'stream', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'name', 'stream'],
                name='unique_class_name_stream_per_school',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active'], name='class_school_active_idx'),
        ]

    @property
    def label(self):
        return f"{self.name} {self.stream}".strip()

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Class name is required.'})
        self.stream = (self.stream or '').strip()

    def delete(self, *args, **kwargs):
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active'])

    def __str__(self):
        return f"{self.label} ({self.school.code})"
