from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.test import TestCase

from apps.core.academics.models import SchoolClass
from apps.core.schools.models import School
from apps.core.schools.services import build_tenant_context


class SchoolClassTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Class School')
        self.other_school = School.objects.create(name='Other School')

    def test_label_joins_name_and_stream(self):
        self.assertEqual(SchoolClass(school=self.school, name='Grade 4', stream='East').label, 'Grade 4 East')
        self.assertEqual(SchoolClass(school=self.school, name='Form 2').label, 'Form 2')

    def test_name_and_stream_unique_per_school(self):
        SchoolClass.objects.create(school=self.school, name='Grade 4', stream='East')
        SchoolClass.objects.create(school=self.other_school, name='Grade 4', stream='East')
        with self.assertRaises(IntegrityError):
            SchoolClass.objects.create(school=self.school, name='Grade 4', stream='East')

    def test_clean_requires_name(self):
        with self.assertRaises(ValidationError):
            SchoolClass(school=self.school, name='   ').full_clean()

    def test_for_tenant_scopes_rows(self):
        own = SchoolClass.objects.create(school=self.school, name='Grade 1')
        SchoolClass.objects.create(school=self.other_school, name='Grade 1')
        context = build_tenant_context(school=self.school)
        self.assertEqual(list(SchoolClass.objects.for_tenant(context)), [own])

    def test_delete_deactivates(self):
        school_class = SchoolClass.objects.create(school=self.school, name='Grade 2')
        school_class.delete()
        school_class.refresh_from_db()
        self.assertFalse(school_class.is_active)
