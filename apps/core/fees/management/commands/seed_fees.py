import random
from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from faker import Faker

from apps.core.fees.conf import current_academic_year, is_due_date_passed, parse_academic_year
from apps.core.fees.models import ACADEMIC_MONTHS, FeeStructure, FeeTransaction
from apps.core.fees.services import create_fee_structure, record_payment
from apps.core.students.models import Student
from apps.core.users.models import User

CLASS_FEES = {
    'Nursery': Decimal('18000.00'),
    'LKG': Decimal('20000.00'),
    'UKG': Decimal('20000.00'),
    'Class 1': Decimal('24000.00'),
    'Class 2': Decimal('24000.00'),
    'Class 3': Decimal('26000.00'),
    'Class 4': Decimal('26000.00'),
    'Class 5': Decimal('28000.00'),
}


class Command(BaseCommand):
    help = 'Seeds the database with fee structures, students and sample payments.'

    def add_arguments(self, parser):
        parser.add_argument('--year', default='', help='Academic year such as 2025-2026. Defaults to the current one.')
        parser.add_argument('--students-per-class', type=int, default=10)
        parser.add_argument('--seed', type=int, default=None, help='Random seed for repeatable data.')

    @transaction.atomic
    def handle(self, *args, **options):
        academic_year = options['year'] or current_academic_year()
        if not parse_academic_year(academic_year):
            raise CommandError(f"Invalid academic year '{academic_year}'. Use the form 2025-2026.")

        fake = Faker('en_IN')
        if options['seed'] is not None:
            Faker.seed(options['seed'])
            random.seed(options['seed'])

        self.stdout.write(f'Seeding fee data for {academic_year}...')

        # Staff users
        if not User.objects.filter(username='superadmin').exists():
            User.objects.create_superuser('superadmin', 'superadmin@example.com', 'password')
            self.stdout.write(self.style.SUCCESS('Successfully created superadmin user.'))

        collector, created = User.objects.get_or_create(
            username='office',
            defaults={'role': User.ROLE_OFFICE_STAFF},
        )
        if created:
            collector.set_password('password')
            collector.save()
            self.stdout.write(self.style.SUCCESS('Successfully created office staff user.'))

        # Students
        for class_name in CLASS_FEES:
            for _ in range(options['students_per_class']):
                student, created = Student.objects.get_or_create(
                    admission_number=f"ADM-{fake.unique.random_number(digits=6, fix_len=True)}",
                    defaults={
                        'first_name': fake.first_name(),
                        'last_name': fake.last_name(),
                        'class_name': class_name,
                        'section': random.choice(['A', 'B']),
                        'guardian_name': fake.name(),
                        'guardian_phone': fake.msisdn()[:10],
                    },
                )
                if created:
                    self.stdout.write(f'  - Created student: {student}')

        # Fee structures, which also open accounts for the students above
        for class_name, total_fee in CLASS_FEES.items():
            if FeeStructure.objects.filter(academic_year=academic_year, class_name=class_name).exists():
                continue
            result = create_fee_structure(
                academic_year=academic_year,
                class_name=class_name,
                total_fee=total_fee,
                breakdown={
                    'tuition': str(total_fee * Decimal('0.80')),
                    'activities': str(total_fee * Decimal('0.20')),
                },
            )
            self.stdout.write(self.style.SUCCESS(
                f"Successfully created fee structure: {class_name} ({result['accounts_created']} accounts)"
            ))

        # Sample payments
        due_date_passed = is_due_date_passed(academic_year)
        payments = 0
        for student in Student.objects.filter(class_name__in=CLASS_FEES, is_active=True):
            if random.random() < 0.3:
                continue
            months = random.randint(1, len(ACADEMIC_MONTHS))
            amount = (CLASS_FEES[student.class_name] / len(ACADEMIC_MONTHS) * months).quantize(Decimal('1'))
            record_payment(
                student_id=student.id,
                academic_year=academic_year,
                amount=amount,
                payment_mode=random.choice([value for value, _ in FeeTransaction.PAYMENT_MODE_CHOICES]),
                payment_for='Tuition fee',
                paid_months=ACADEMIC_MONTHS[:months],
                collected_by=collector,
                due_date_passed=due_date_passed,
            )
            payments += 1

        self.stdout.write(self.style.SUCCESS(f'Recorded {payments} sample payments.'))
        self.stdout.write(self.style.SUCCESS('Seeding complete.'))
