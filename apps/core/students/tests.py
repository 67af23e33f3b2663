from django.core.exceptions import ValidationError
from django.test import TestCase

from apps.core.academics.models import SchoolClass
from apps.core.schools.models import School
from apps.core.students.models import Student


class StudentModelTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Student School')
        self.school_class = SchoolClass.objects.create(school=self.school, name='Grade 3')

    def test_full_name(self):
        student = Student(school=self.school, admission_number='S-1', first_name='Amina', last_name='Otieno')
        self.assertEqual(student.full_name, 'Amina Otieno')
        self.assertEqual(Student(school=self.school, first_name='Brian').full_name, 'Brian')

    def test_class_must_belong_to_school(self):
        other_school = School.objects.create(name='Other School')
        foreign_class = SchoolClass.objects.create(school=other_school, name='Grade 3')
        student = Student(school=self.school, admission_number='S-2', first_name='Cheri', current_class=foreign_class)
        with self.assertRaises(ValidationError):
            student.full_clean()

    def test_delete_archives(self):
        student = Student.objects.create(
            school=self.school,
            admission_number='S-3',
            first_name='Dora',
            current_class=self.school_class,
        )
        student.delete()
        student.refresh_from_db()
        self.assertTrue(student.is_archived)
        self.assertFalse(student.is_active)
        self.assertEqual(student.status, Student.STATUS_ALUMNI)
        self.assertIsNotNone(student.archived_at)
