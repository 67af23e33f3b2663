import random
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from faker import Faker

from apps.core.academics.models import SchoolClass
from apps.core.fees.models import FeeItem, FeePlan, FeePlanItem
from apps.core.schools.models import School, Subscription
from apps.core.students.models import Student
from apps.core.users.models import User

FEE_ITEMS = (
    ('Tuition', 'TUI', Decimal('3500.00')),
    ('Activity', 'ACT', Decimal('500.00')),
    ('Lunch', 'LUN', Decimal('1000.00')),
)


class Command(BaseCommand):
    help = 'Seeds a demo school with classes, students and fee plans.'

    def add_arguments(self, parser):
        parser.add_argument('--school-code', default='DEMO')
        parser.add_argument('--classes', type=int, default=4)
        parser.add_argument('--students', type=int, default=15, help='Students per class.')
        parser.add_argument('--term', default='1')
        parser.add_argument('--year', type=int, default=timezone.localdate().year)
        parser.add_argument('--password', default='password')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding fee data...')
        fake = Faker()
        year = options['year']
        term = options['term']

        school, created = School.objects.get_or_create(
            code=options['school_code'],
            defaults={
                'name': fake.company() + ' School',
                'address': fake.address(),
                'phone': fake.phone_number()[:20],
                'email': fake.email(),
            },
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Created school: {school.name}'))

        if not Subscription.objects.filter(school=school).exists():
            Subscription.objects.create(
                school=school,
                plan_code='STANDARD',
                status=Subscription.STATUS_ACTIVE,
                entitlements={Subscription.FEES_READ: True, Subscription.FEES_WRITE: True},
            )
            self.stdout.write(self.style.SUCCESS('Created active subscription.'))

        if not User.objects.filter(username='superadmin').exists():
            User.objects.create_superuser('superadmin', 'superadmin@example.com', options['password'])
            self.stdout.write(self.style.SUCCESS('Created superadmin user.'))

        for username, role in (
            (f'{school.code.lower()}-admin', User.ROLE_SCHOOLADMIN),
            (f'{school.code.lower()}-bursar', User.ROLE_ACCOUNTANT),
        ):
            user, created = User.objects.get_or_create(
                username=username,
                defaults={'role': role, 'school': school},
            )
            if created:
                user.set_password(options['password'])
                user.save()
                self.stdout.write(self.style.SUCCESS(f'Created {role} user: {username}'))

        fee_items = []
        for name, code, _ in FEE_ITEMS:
            item, _ = FeeItem.objects.get_or_create(school=school, name=name, defaults={'code': code})
            fee_items.append(item)

        for index in range(1, options['classes'] + 1):
            school_class, created = SchoolClass.objects.get_or_create(
                school=school,
                name=f'Grade {index}',
                stream='',
                defaults={'display_order': index, 'year': year},
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f'Created class: {school_class.label}'))

            plan, created = FeePlan.objects.get_or_create(
                school=school,
                school_class=school_class,
                year=year,
                term=term,
                defaults={'title': f'{school_class.label} Term {term} {year}'},
            )
            if created:
                for position, (item, (_, _, amount)) in enumerate(zip(fee_items, FEE_ITEMS)):
                    FeePlanItem.objects.create(
                        plan=plan,
                        fee_item=item,
                        amount=amount + Decimal(100 * (index - 1)),
                        required=item.code != 'LUN',
                        position=position,
                    )
                self.stdout.write(self.style.SUCCESS(f'  - Created fee plan: {plan}'))

            existing = school_class.students.count()
            for _ in range(max(options['students'] - existing, 0)):
                Student.objects.create(
                    school=school,
                    admission_number=f'{school.code}-{fake.unique.random_number(digits=6, fix_len=True)}',
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    gender=random.choice(['male', 'female']),
                    current_class=school_class,
                    guardian_phone=fake.phone_number()[:20],
                )

        self.stdout.write(self.style.SUCCESS('Fee data seeding complete.'))
