from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.core.fees.conf import current_academic_year, is_due_date_passed, parse_academic_year
from apps.core.fees.services import refresh_overdue_statuses


class Command(BaseCommand):
    help = 'Recomputes the payment status of every fee account in an academic year.'

    def add_arguments(self, parser):
        parser.add_argument('--year', default='', help='Academic year such as 2025-2026. Defaults to the current one.')
        parser.add_argument('--as-of', default='', help='Evaluate the due date as of this ISO date instead of today.')

    def handle(self, *args, **options):
        academic_year = options['year'] or current_academic_year()
        if not parse_academic_year(academic_year):
            raise CommandError(f"Invalid academic year '{academic_year}'. Use the form 2025-2026.")

        as_of = None
        if options['as_of']:
            try:
                as_of = date.fromisoformat(options['as_of'])
            except ValueError:
                raise CommandError(f"Invalid date '{options['as_of']}'. Use YYYY-MM-DD.")

        due_date_passed = is_due_date_passed(academic_year, as_of=as_of)
        changed = refresh_overdue_statuses(academic_year=academic_year, due_date_passed=due_date_passed)
        self.stdout.write(self.style.SUCCESS(
            f'Refreshed fee statuses for {academic_year} (due date passed: {due_date_passed}); {changed} changed.'
        ))
