import json
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.core.management import call_command
from django.http import JsonResponse
from django.test import RequestFactory, TestCase

from apps.core.students.models import Student

from .audit import log_audit_event, snapshot
from .decorators import role_required
from .models import AuditLog, User


@role_required(User.FEE_COLLECTION_ROLES)
def _collect_view(request):
    return JsonResponse({'success': True})


class RoleTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()

    def test_superuser_always_has_super_admin_role(self):
        user = self.user_model.objects.create_superuser('root', 'root@example.com', 'pass12345')
        self.assertEqual(user.role, User.ROLE_SUPER_ADMIN)

        user.role = User.ROLE_TEACHER
        user.save()
        user.refresh_from_db()
        self.assertEqual(user.role, User.ROLE_SUPER_ADMIN)

    def test_new_users_default_to_teacher(self):
        user = self.user_model.objects.create_user(username='plain', password='pass12345')
        self.assertEqual(user.role, User.ROLE_TEACHER)
        self.assertFalse(user.can_collect_fees)

    def test_fee_permissions_by_role(self):
        office = self.user_model.objects.create_user(username='office', password='x', role=User.ROLE_OFFICE_STAFF)
        admin = self.user_model.objects.create_user(username='admin', password='x', role=User.ROLE_ADMIN)

        self.assertTrue(office.can_collect_fees)
        self.assertFalse(office.can_manage_fees)
        self.assertTrue(admin.can_collect_fees)
        self.assertTrue(admin.can_manage_fees)


class RoleRequiredTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.user_model = get_user_model()

    def test_anonymous_request_gets_401(self):
        request = self.factory.get('/fees/statistics/')
        request.user = AnonymousUser()

        response = _collect_view(request)

        self.assertEqual(response.status_code, 401)
        self.assertFalse(json.loads(response.content)['success'])

    def test_wrong_role_gets_403(self):
        request = self.factory.get('/fees/statistics/')
        request.user = self.user_model.objects.create_user(username='student1', password='x', role=User.ROLE_STUDENT)

        response = _collect_view(request)

        self.assertEqual(response.status_code, 403)

    def test_allowed_role_passes_through(self):
        request = self.factory.get('/fees/statistics/')
        request.user = self.user_model.objects.create_user(username='office1', password='x', role=User.ROLE_OFFICE_STAFF)

        response = _collect_view(request)

        self.assertEqual(response.status_code, 200)

    def test_single_role_string_is_accepted(self):
        view = role_required(User.ROLE_ADMIN)(_collect_view.__wrapped__)
        request = self.factory.get('/')
        request.user = self.user_model.objects.create_user(username='admin1', password='x', role=User.ROLE_ADMIN)

        self.assertEqual(view(request).status_code, 200)


class AuditLogTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.user = get_user_model().objects.create_user(
            username='auditor',
            password='pass12345',
            role=User.ROLE_ADMIN,
        )

    def test_login_and_logout_are_audited(self):
        self.client.login(username='auditor', password='pass12345')
        self.client.logout()

        actions = list(AuditLog.objects.filter(user=self.user).order_by('id').values_list('action', flat=True))
        self.assertEqual(actions, ['user.login', 'user.logout'])

    def test_event_records_request_and_target(self):
        student = Student.objects.create(admission_number='AUD-1', first_name='Nia', class_name='Class 1')
        request = self.factory.post('/fees/payments/', HTTP_X_FORWARDED_FOR='10.0.0.7, 10.0.0.1')
        request.user = self.user

        log_audit_event(
            request=request,
            action='fees.payment_recorded',
            target=student,
            description='Receipt=2526-000001',
            new_value={'amount_paid': Decimal('400.00')},
        )

        entry = AuditLog.objects.get(action='fees.payment_recorded')
        self.assertEqual(entry.user, self.user)
        self.assertEqual(entry.entity_type, 'Student')
        self.assertEqual(entry.entity_id, str(student.pk))
        self.assertEqual(entry.method, 'POST')
        self.assertEqual(entry.path, '/fees/payments/')
        self.assertEqual(entry.ip_address, '10.0.0.7')
        self.assertEqual(json.loads(entry.new_value), {'amount_paid': '400.00'})

    def test_snapshot_of_model_instance(self):
        student = Student.objects.create(admission_number='AUD-2', first_name='Om', class_name='Class 2')

        data = json.loads(snapshot(student))

        self.assertEqual(data['admission_number'], 'AUD-2')
        self.assertEqual(snapshot(None), '')


class MigrationTests(TestCase):
    def test_models_match_migrations(self):
        out = StringIO()
        try:
            call_command('makemigrations', 'users', check=True, dry_run=True, stdout=out)
        except SystemExit:
            self.fail(f"users models have changes without a migration:\n{out.getvalue()}")
