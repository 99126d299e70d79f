import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist, ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError, connection, connections
from django.test import RequestFactory, TestCase, TransactionTestCase, override_settings
from django.urls import reverse

from apps.core.students.models import Student
from apps.core.users.models import AuditLog

from . import accounts
from .accounts import derive_status
from .admin import FeeAccountAdmin
from .conf import academic_year_short, current_academic_year, due_date_for, is_due_date_passed
from .exceptions import InvalidStateError, NotFoundError, StorageError
from .models import FeeAccount, FeeStructure, FeeTransaction, ReceiptSequence
from .receipts import generate_fee_receipt_pdf
from .services import (
    adelete_payment,
    aget_account,
    arecord_payment,
    copy_fee_structures,
    create_fee_structure,
    delete_fee_structure,
    delete_payment,
    get_account,
    record_payment,
    refresh_overdue_statuses,
    sync_fee_accounts_for_structure,
    update_fee_structure,
)
from .stats import (
    class_wise_pending_summary,
    fee_account_statistics,
    fee_transactions,
    recent_fee_collections,
    student_fee_history,
    students_with_pending_fees,
)

YEAR = '2025-2026'


def _sum_of_transactions(account):
    return sum((row.amount_paid for row in FeeTransaction.objects.filter(account=account)), Decimal('0.00'))


class FeesBaseTestCase(TestCase):
    def setUp(self):
        user_model = get_user_model()

        self.student = Student.objects.create(
            admission_number='FEE-001',
            first_name='Riya',
            last_name='Sharma',
            class_name='Class 5',
            section='A',
            guardian_phone='9800000001',
        )
        self.other_student = Student.objects.create(
            admission_number='FEE-002',
            first_name='Arjun',
            class_name='Class 5',
            section='B',
        )

        self.structure = FeeStructure.objects.create(
            academic_year=YEAR,
            class_name='Class 5',
            total_fee=Decimal('1000.00'),
            breakdown={'tuition': '800.00', 'activities': '200.00'},
        )

        self.admin = user_model.objects.create_user(
            username='fees_admin',
            password='pass12345',
            role='admin',
        )
        self.office = user_model.objects.create_user(
            username='fees_office',
            password='pass12345',
            role='office_staff',
        )
        self.teacher = user_model.objects.create_user(
            username='fees_teacher',
            password='pass12345',
            role='teacher',
        )

    def pay(self, amount, student=None, **kwargs):
        kwargs.setdefault('payment_mode', FeeTransaction.MODE_CASH)
        return record_payment(
            student_id=(student or self.student).id,
            academic_year=kwargs.pop('academic_year', YEAR),
            amount=amount,
            **kwargs,
        )


class StatusDerivationTests(TestCase):
    def test_fully_paid_is_paid_even_after_due_date(self):
        self.assertEqual(derive_status(Decimal('1000'), Decimal('1000'), False), 'paid')
        self.assertEqual(derive_status(Decimal('1000'), Decimal('1000'), True), 'paid')

    def test_overpayment_is_paid(self):
        self.assertEqual(derive_status(Decimal('1000'), Decimal('1200'), False), 'paid')

    def test_zero_fee_is_paid(self):
        self.assertEqual(derive_status(Decimal('0'), Decimal('0'), True), 'paid')

    def test_outstanding_after_due_date_is_overdue(self):
        self.assertEqual(derive_status(Decimal('1000'), Decimal('0'), True), 'overdue')
        self.assertEqual(derive_status(Decimal('1000'), Decimal('400'), True), 'overdue')

    def test_nothing_paid_is_pending(self):
        self.assertEqual(derive_status(Decimal('1000'), Decimal('0'), False), 'pending')

    def test_something_paid_is_partial(self):
        self.assertEqual(derive_status(Decimal('1000'), Decimal('400'), False), 'partial')

    def test_derivation_is_repeatable(self):
        first = derive_status(Decimal('1000'), Decimal('250.50'), False)
        second = derive_status(Decimal('1000'), Decimal('250.50'), False)
        self.assertEqual(first, second)


class AcademicYearConfTests(TestCase):
    @override_settings(FEES_CURRENT_ACADEMIC_YEAR='')
    def test_current_academic_year_runs_april_to_march(self):
        self.assertEqual(current_academic_year(date(2025, 3, 31)), '2024-2025')
        self.assertEqual(current_academic_year(date(2025, 4, 1)), '2025-2026')

    @override_settings(FEES_CURRENT_ACADEMIC_YEAR='2030-2031')
    def test_current_academic_year_can_be_pinned(self):
        self.assertEqual(current_academic_year(date(2025, 6, 1)), '2030-2031')

    def test_academic_year_short(self):
        self.assertEqual(academic_year_short('2025-2026'), '2526')
        self.assertEqual(academic_year_short('2099-2100'), '9900')
        self.assertEqual(academic_year_short('Session A'), 'SESSIONA')

    @override_settings(FEES_DUE_MONTH=12, FEES_DUE_DAY=10)
    def test_due_date_in_start_year(self):
        self.assertEqual(due_date_for('2025-2026'), date(2025, 12, 10))
        self.assertFalse(is_due_date_passed('2025-2026', as_of=date(2025, 12, 10)))
        self.assertTrue(is_due_date_passed('2025-2026', as_of=date(2025, 12, 11)))

    @override_settings(FEES_DUE_MONTH=1, FEES_DUE_DAY=15)
    def test_due_date_in_end_year(self):
        self.assertEqual(due_date_for('2025-2026'), date(2026, 1, 15))

    def test_unparseable_year_is_never_overdue(self):
        self.assertIsNone(due_date_for('current'))
        self.assertFalse(is_due_date_passed('current', as_of=date(2099, 1, 1)))


class RecordPaymentTests(FeesBaseTestCase):
    def test_full_payment_marks_account_paid(self):
        result = self.pay(Decimal('1000.00'))

        self.assertEqual(result.new_status, FeeAccount.STATUS_PAID)
        self.assertEqual(result.new_balance, Decimal('0.00'))
        self.assertEqual(result.receipt_number, '2526-000001')

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(account.total_paid, Decimal('1000.00'))
        self.assertEqual(account.balance, Decimal('0.00'))
        self.assertEqual(account.status, FeeAccount.STATUS_PAID)

    def test_partial_payment_marks_account_partial(self):
        result = self.pay(Decimal('400.00'))

        self.assertEqual(result.new_status, FeeAccount.STATUS_PARTIAL)
        self.assertEqual(result.new_balance, Decimal('600.00'))

    def test_partial_payment_after_due_date_is_overdue(self):
        result = self.pay(Decimal('400.00'), due_date_passed=True)
        self.assertEqual(result.new_status, FeeAccount.STATUS_OVERDUE)

        result = self.pay(Decimal('600.00'), due_date_passed=True)
        self.assertEqual(result.new_status, FeeAccount.STATUS_PAID)

    def test_account_is_opened_from_fee_structure(self):
        self.assertIsNone(get_account(student_id=self.student.id, academic_year=YEAR))

        self.pay(Decimal('100.00'))

        account = get_account(student_id=self.student.id, academic_year=YEAR)
        self.assertEqual(account.total_fee, Decimal('1000.00'))

    def test_explicit_total_fee_overrides_structure(self):
        result = self.pay(Decimal('100.00'), total_fee=Decimal('1500.00'))
        self.assertEqual(result.account.total_fee, Decimal('1500.00'))
        self.assertEqual(result.new_balance, Decimal('1400.00'))

    def test_receipt_numbers_are_unique_and_sequential(self):
        first = self.pay(Decimal('100.00'))
        second = self.pay(Decimal('100.00'), student=self.other_student)
        third = self.pay(Decimal('100.00'))

        self.assertEqual(
            [first.receipt_number, second.receipt_number, third.receipt_number],
            ['2526-000001', '2526-000002', '2526-000003'],
        )

    def test_receipt_sequence_is_per_academic_year(self):
        self.pay(Decimal('100.00'))
        other_year = self.pay(Decimal('100.00'), academic_year='2026-2027', total_fee=Decimal('1000.00'))
        self.assertEqual(other_year.receipt_number, '2627-000001')

    def test_deleted_receipt_numbers_are_not_reused(self):
        first = self.pay(Decimal('100.00'))
        delete_payment(transaction_id=first.transaction.id)

        second = self.pay(Decimal('100.00'))
        self.assertEqual(second.receipt_number, '2526-000002')

    def test_paid_months_are_merged_in_academic_order(self):
        self.pay(Decimal('200.00'), paid_months=['May', 'April'])
        result = self.pay(Decimal('100.00'), paid_months=['January', 'June'])

        self.assertEqual(result.account.paid_months, ['April', 'May', 'June', 'January'])
        self.assertEqual(result.transaction.paid_months, ['June', 'January'])

    def test_collector_and_details_are_stored(self):
        result = self.pay(
            Decimal('250.00'),
            payment_mode=FeeTransaction.MODE_UPI,
            payment_for='Tuition fee',
            remarks='  Paid at counter  ',
            collected_by=self.office,
        )

        fee_transaction = FeeTransaction.objects.get(pk=result.transaction.id)
        self.assertEqual(fee_transaction.payment_mode, FeeTransaction.MODE_UPI)
        self.assertEqual(fee_transaction.payment_for, 'Tuition fee')
        self.assertEqual(fee_transaction.remarks, 'Paid at counter')
        self.assertEqual(fee_transaction.collected_by, self.office)
        self.assertEqual(fee_transaction.student, self.student)
        self.assertEqual(fee_transaction.academic_year, YEAR)

    def test_negative_amount_is_rejected_without_mutation(self):
        self.pay(Decimal('400.00'))

        with self.assertRaises(ValidationError):
            self.pay(Decimal('-50.00'))

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(account.total_paid, Decimal('400.00'))
        self.assertEqual(account.status, FeeAccount.STATUS_PARTIAL)
        self.assertEqual(FeeTransaction.objects.count(), 1)
        self.assertEqual(ReceiptSequence.objects.get(academic_year=YEAR).last_number, 1)

    def test_invalid_amounts_never_open_an_account(self):
        for amount in (Decimal('0'), '-1', 'abc', 'NaN', Decimal('10.005'), None):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError):
                    self.pay(amount)

        self.assertFalse(FeeAccount.objects.exists())
        self.assertFalse(ReceiptSequence.objects.exists())

    def test_unknown_payment_mode_rolls_back_account_creation(self):
        with self.assertRaises(ValidationError):
            self.pay(Decimal('100.00'), payment_mode='barter')

        self.assertFalse(FeeAccount.objects.exists())
        self.assertFalse(FeeTransaction.objects.exists())

    def test_unknown_month_label_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.pay(Decimal('100.00'), paid_months=['Smarch'])
        self.assertFalse(FeeTransaction.objects.exists())

    def test_missing_student_raises_not_found(self):
        with self.assertRaises(NotFoundError) as ctx:
            record_payment(
                student_id=999999,
                academic_year=YEAR,
                amount=Decimal('100.00'),
                payment_mode=FeeTransaction.MODE_CASH,
            )

        self.assertEqual(ctx.exception.step, 'resolving fee account')
        self.assertIsInstance(ctx.exception, ObjectDoesNotExist)

    def test_missing_structure_raises_not_found(self):
        student = Student.objects.create(admission_number='FEE-099', first_name='Kabir', class_name='Class 9')
        with self.assertRaises(NotFoundError):
            self.pay(Decimal('100.00'), student=student)
        self.assertFalse(FeeAccount.objects.filter(student=student).exists())

    def test_storage_failure_is_wrapped_and_rolled_back(self):
        with mock.patch('apps.core.fees.payments.create_transaction', side_effect=DatabaseError('disk full')):
            with self.assertRaises(StorageError) as ctx:
                self.pay(Decimal('100.00'))

        self.assertEqual(ctx.exception.step, 'creating fee transaction')
        self.assertIsInstance(ctx.exception.__cause__, DatabaseError)
        self.assertFalse(FeeAccount.objects.exists())

    def test_failure_while_applying_delta_leaves_no_transaction(self):
        with mock.patch('apps.core.fees.accounts.apply_delta', side_effect=DatabaseError('timeout')):
            with self.assertRaises(StorageError) as ctx:
                self.pay(Decimal('100.00'))

        self.assertEqual(ctx.exception.step, 'applying payment to fee account')
        self.assertFalse(FeeTransaction.objects.exists())
        self.assertFalse(FeeAccount.objects.exists())

    def test_oversized_amounts_are_rejected_before_opening_an_account(self):
        for amount in (Decimal('1e30'), Decimal('123456789012.00'), '10000000000', 1e15):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError):
                    self.pay(amount)

        self.assertFalse(FeeAccount.objects.exists())
        self.assertFalse(FeeTransaction.objects.exists())

    def test_largest_storable_amount_is_accepted(self):
        result = self.pay(accounts.MAX_AMOUNT)

        self.assertEqual(result.new_status, FeeAccount.STATUS_PAID)
        self.assertEqual(result.transaction.amount_paid, accounts.MAX_AMOUNT)

    def test_quantize_reports_unrepresentable_values_as_validation_errors(self):
        with self.assertRaises(ValidationError):
            accounts.quantize(Decimal('1e30'))

    def test_unknown_payment_mode_reports_the_failing_step(self):
        with self.assertLogs('apps.core.fees.services', level='WARNING') as logs:
            with self.assertRaises(ValidationError) as ctx:
                self.pay(Decimal('100.00'), payment_mode='barter')

        self.assertEqual(ctx.exception.step, 'creating fee transaction')
        self.assertIn('creating fee transaction', logs.output[0])
        self.assertFalse(FeeAccount.objects.exists())

    def test_transactions_are_immutable(self):
        result = self.pay(Decimal('100.00'))
        fee_transaction = FeeTransaction.objects.get(pk=result.transaction.id)

        fee_transaction.amount_paid = Decimal('900.00')
        with self.assertRaises(ValidationError):
            fee_transaction.save()

        fee_transaction.refresh_from_db()
        fee_transaction.remarks = 'Cheque cleared'
        fee_transaction.save()
        self.assertEqual(FeeTransaction.objects.get(pk=result.transaction.id).amount_paid, Decimal('100.00'))


class DeletePaymentTests(FeesBaseTestCase):
    def test_delete_restores_pending_account(self):
        result = self.pay(Decimal('400.00'))

        reversal = delete_payment(transaction_id=result.transaction.id)

        self.assertEqual(reversal.receipt_number, result.receipt_number)
        self.assertEqual(reversal.amount_reversed, Decimal('400.00'))
        self.assertEqual(reversal.new_status, FeeAccount.STATUS_PENDING)
        self.assertEqual(reversal.new_balance, Decimal('1000.00'))

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(account.total_paid, Decimal('0.00'))
        self.assertFalse(FeeTransaction.objects.filter(pk=result.transaction.id).exists())

    def test_second_delete_raises_not_found(self):
        result = self.pay(Decimal('400.00'))
        delete_payment(transaction_id=result.transaction.id)

        with self.assertRaises(NotFoundError) as ctx:
            delete_payment(transaction_id=result.transaction.id)
        self.assertEqual(ctx.exception.step, 'deleting fee transaction')

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(account.total_paid, Decimal('0.00'))

    def test_round_trip_restores_previous_state(self):
        self.pay(Decimal('300.00'), paid_months=['April'])
        before = FeeAccount.objects.get(student=self.student, academic_year=YEAR)

        result = self.pay(Decimal('700.00'), paid_months=['May'])
        self.assertEqual(result.new_status, FeeAccount.STATUS_PAID)

        reversal = delete_payment(transaction_id=result.transaction.id)
        after = FeeAccount.objects.get(pk=before.pk)

        self.assertEqual(after.total_paid, before.total_paid)
        self.assertEqual(after.balance, before.balance)
        self.assertEqual(after.status, before.status)
        self.assertEqual(after.paid_months, ['April'])
        self.assertEqual(reversal.new_status, FeeAccount.STATUS_PARTIAL)

    def test_delete_uses_due_date_flag(self):
        first = self.pay(Decimal('400.00'))
        self.pay(Decimal('100.00'))

        reversal = delete_payment(transaction_id=first.transaction.id, due_date_passed=True)
        self.assertEqual(reversal.new_status, FeeAccount.STATUS_OVERDUE)

    def test_delete_that_would_make_total_negative_is_rolled_back(self):
        result = self.pay(Decimal('400.00'))
        FeeAccount.objects.filter(pk=result.account.pk).update(
            total_paid=Decimal('100.00'),
            balance=Decimal('900.00'),
        )

        with self.assertRaises(InvalidStateError) as ctx:
            delete_payment(transaction_id=result.transaction.id)

        self.assertEqual(ctx.exception.step, 'reverting fee account')
        self.assertTrue(FeeTransaction.objects.filter(pk=result.transaction.id).exists())
        self.assertEqual(FeeAccount.objects.get(pk=result.account.pk).total_paid, Decimal('100.00'))

class LedgerInvariantTests(FeesBaseTestCase):
    def assertLedgerConsistent(self, account):
        account.refresh_from_db()
        self.assertEqual(account.total_paid, _sum_of_transactions(account))
        self.assertEqual(account.balance, account.total_fee - account.total_paid)

    def test_totals_match_transactions_after_mixed_operations(self):
        first = self.pay(Decimal('150.25'))
        second = self.pay(Decimal('99.75'))
        self.pay(Decimal('300.00'))
        delete_payment(transaction_id=second.transaction.id)
        self.pay(Decimal('0.01'))
        delete_payment(transaction_id=first.transaction.id)

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertLedgerConsistent(account)
        self.assertEqual(account.total_paid, Decimal('300.01'))

    def test_sequential_payments_reach_paid_without_lost_updates(self):
        count = 10
        amount = Decimal('100.00')
        for _ in range(count):
            self.pay(amount)

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(account.total_paid, amount * count)
        self.assertEqual(account.status, FeeAccount.STATUS_PAID)
        self.assertLedgerConsistent(account)

    def test_delta_is_applied_to_stored_total_not_stale_instance(self):
        self.pay(Decimal('100.00'))
        stale = FeeAccount.objects.get(student=self.student, academic_year=YEAR)

        self.pay(Decimal('200.00'))
        self.assertEqual(stale.total_paid, Decimal('100.00'))

        account = accounts.apply_delta(account_id=stale.pk, amount_delta=Decimal('0.00'))
        self.assertEqual(account.total_paid, Decimal('300.00'))

    def test_apply_delta_on_missing_account(self):
        with self.assertRaises(NotFoundError):
            accounts.apply_delta(account_id=999999, amount_delta=Decimal('10.00'))

    def test_balance_is_recomputed_from_stored_totals(self):
        self.pay(Decimal('100.00'))
        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        FeeAccount.objects.filter(pk=account.pk).update(balance=Decimal('1.00'))

        result = self.pay(Decimal('200.00'))

        self.assertEqual(result.new_balance, Decimal('700.00'))
        self.assertEqual(result.new_status, FeeAccount.STATUS_PARTIAL)
        self.assertLedgerConsistent(account)

    def test_balance_follows_a_changed_total_fee(self):
        self.pay(Decimal('100.00'))
        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        FeeAccount.objects.filter(pk=account.pk).update(total_fee=Decimal('1500.00'))

        result = self.pay(Decimal('200.00'))

        self.assertEqual(result.new_balance, Decimal('1200.00'))
        self.assertLedgerConsistent(account)

    def test_delta_beyond_column_capacity_is_refused(self):
        self.pay(Decimal('100.00'))
        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        FeeAccount.objects.filter(pk=account.pk).update(total_paid=Decimal('9999999990.00'))

        with self.assertRaises(InvalidStateError):
            accounts.apply_delta(account_id=account.pk, amount_delta=Decimal('100.00'))

        account.refresh_from_db()
        self.assertEqual(account.total_paid, Decimal('9999999990.00'))


class ConcurrentPaymentTests(TransactionTestCase):
    count = 8
    amount = Decimal('125.00')

    def setUp(self):
        if connection.vendor == 'sqlite' and connection.is_in_memory_db():
            self.skipTest('Threads cannot share an in-memory SQLite test database.')

        self.student = Student.objects.create(admission_number='CONC-001', first_name='Meera', class_name='Class 6')
        FeeAccount.objects.create(
            student=self.student,
            academic_year=YEAR,
            total_fee=self.amount * self.count,
            total_paid=Decimal('0.00'),
            balance=self.amount * self.count,
        )

    def test_concurrent_deletes_restore_the_account(self):
        transaction_ids = [
            record_payment(
                student_id=self.student.id,
                academic_year=YEAR,
                amount=self.amount,
                payment_mode=FeeTransaction.MODE_UPI,
            ).transaction.id
            for _ in range(self.count)
        ]
        barrier = threading.Barrier(self.count)

        def reverse_payment(transaction_id):
            try:
                barrier.wait()
                return delete_payment(transaction_id=transaction_id).amount_reversed
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=self.count) as pool:
            reversed_amounts = list(pool.map(reverse_payment, transaction_ids))

        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(sum(reversed_amounts), self.amount * self.count)
        self.assertEqual(account.total_paid, Decimal('0.00'))
        self.assertEqual(account.balance, self.amount * self.count)
        self.assertEqual(account.status, FeeAccount.STATUS_PENDING)
        self.assertFalse(FeeTransaction.objects.filter(account=account).exists())

    def test_concurrent_payments_do_not_lose_updates(self):
        count = self.count
        amount = self.amount
        student = self.student
        barrier = threading.Barrier(count)

        def collect(_):
            try:
                barrier.wait()
                return record_payment(
                    student_id=student.id,
                    academic_year=YEAR,
                    amount=amount,
                    payment_mode=FeeTransaction.MODE_CASH,
                ).receipt_number
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=count) as pool:
            receipts = list(pool.map(collect, range(count)))

        account = FeeAccount.objects.get(student=student, academic_year=YEAR)
        self.assertEqual(account.total_paid, amount * count)
        self.assertEqual(account.status, FeeAccount.STATUS_PAID)
        self.assertEqual(len(set(receipts)), count)


class AsyncLedgerTests(FeesBaseTestCase):
    async def test_async_record_get_and_delete(self):
        result = await arecord_payment(
            student_id=self.student.id,
            academic_year=YEAR,
            amount=Decimal('400.00'),
            payment_mode=FeeTransaction.MODE_CASH,
        )
        self.assertEqual(result.new_status, FeeAccount.STATUS_PARTIAL)

        account = await aget_account(student_id=self.student.id, academic_year=YEAR)
        self.assertEqual(account.total_paid, Decimal('400.00'))

        reversal = await adelete_payment(transaction_id=result.transaction.id)
        self.assertEqual(reversal.new_status, FeeAccount.STATUS_PENDING)


class FeeStructureServiceTests(FeesBaseTestCase):
    def test_create_structure_opens_accounts_for_active_students(self):
        Student.objects.create(admission_number='FEE-010', first_name='Anaya', class_name='Class 6')
        Student.objects.create(admission_number='FEE-011', first_name='Dev', class_name='Class 6', is_active=False)

        result = create_fee_structure(
            academic_year=YEAR,
            class_name=' Class 6 ',
            total_fee=Decimal('1200.00'),
        )

        self.assertEqual(result['structure'].class_name, 'Class 6')
        self.assertEqual(result['accounts_created'], 1)
        account = FeeAccount.objects.get(student__admission_number='FEE-010', academic_year=YEAR)
        self.assertEqual(account.total_fee, Decimal('1200.00'))
        self.assertEqual(account.balance, Decimal('1200.00'))
        self.assertEqual(account.status, FeeAccount.STATUS_PENDING)

    def test_duplicate_structure_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_fee_structure(academic_year=YEAR, class_name='Class 5', total_fee=Decimal('10.00'))

    def test_negative_structure_fee_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_fee_structure(academic_year=YEAR, class_name='Class 7', total_fee=Decimal('-1.00'))

    def test_sync_skips_existing_accounts(self):
        self.pay(Decimal('100.00'))

        result = sync_fee_accounts_for_structure(self.structure)

        self.assertEqual(result, {'created': 1, 'skipped': 1, 'total': 2})
        self.assertEqual(FeeAccount.objects.get(student=self.student).total_paid, Decimal('100.00'))

    def test_sync_rejects_inactive_structure(self):
        self.structure.is_active = False
        self.structure.save()
        with self.assertRaises(ValidationError):
            sync_fee_accounts_for_structure(self.structure)

    def test_update_structure_keeps_existing_accounts(self):
        self.pay(Decimal('100.00'))

        update_fee_structure(structure=self.structure, total_fee=Decimal('1500.00'))

        self.structure.refresh_from_db()
        self.assertEqual(self.structure.total_fee, Decimal('1500.00'))
        self.assertEqual(FeeAccount.objects.get(student=self.student).total_fee, Decimal('1000.00'))

    def test_copy_structures_to_next_year(self):
        FeeStructure.objects.create(academic_year=YEAR, class_name='Class 6', total_fee=Decimal('1100.00'))
        FeeStructure.objects.create(
            academic_year=YEAR,
            class_name='Class 7',
            total_fee=Decimal('1300.00'),
            is_active=False,
        )

        copied = copy_fee_structures(from_year=YEAR, to_year='2026-2027')

        self.assertEqual(copied, 2)
        self.assertEqual(
            list(FeeStructure.objects.filter(academic_year='2026-2027').values_list('class_name', 'total_fee')),
            [('Class 5', Decimal('1000.00')), ('Class 6', Decimal('1100.00'))],
        )

    def test_copy_rejects_existing_target_year(self):
        FeeStructure.objects.create(academic_year='2026-2027', class_name='Class 5', total_fee=Decimal('1.00'))
        with self.assertRaises(ValidationError):
            copy_fee_structures(from_year=YEAR, to_year='2026-2027')

    def test_copy_from_empty_year_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            copy_fee_structures(from_year='2010-2011', to_year='2011-2012')

    def test_delete_structure_keeps_existing_accounts(self):
        self.pay(Decimal('300.00'))

        delete_fee_structure(structure=self.structure)

        self.assertFalse(FeeStructure.objects.filter(pk=self.structure.pk).exists())
        account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.assertEqual(account.total_fee, Decimal('1000.00'))
        self.assertEqual(account.balance, Decimal('700.00'))

        with self.assertRaises(NotFoundError):
            self.pay(Decimal('100.00'), student=self.other_student)

    def test_copy_succeeds_after_target_year_is_cleared(self):
        existing = FeeStructure.objects.create(academic_year='2026-2027', class_name='Class 5', total_fee=Decimal('1.00'))
        delete_fee_structure(structure=existing)

        self.assertEqual(copy_fee_structures(from_year=YEAR, to_year='2026-2027'), 1)

    @override_settings(FEES_CURRENT_ACADEMIC_YEAR=YEAR)
    def test_new_student_gets_account_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            student = Student.objects.create(admission_number='FEE-020', first_name='Ishaan', class_name='Class 5')

        account = FeeAccount.objects.get(student=student, academic_year=YEAR)
        self.assertEqual(account.total_fee, Decimal('1000.00'))

    @override_settings(FEES_CURRENT_ACADEMIC_YEAR=YEAR)
    def test_new_student_without_structure_gets_no_account(self):
        with self.captureOnCommitCallbacks(execute=True):
            student = Student.objects.create(admission_number='FEE-021', first_name='Tara', class_name='Class 12')

        self.assertFalse(FeeAccount.objects.filter(student=student).exists())


class OverdueRefreshTests(FeesBaseTestCase):
    def test_refresh_marks_outstanding_accounts_overdue(self):
        sync_fee_accounts_for_structure(self.structure)
        self.pay(Decimal('400.00'))
        self.pay(Decimal('1000.00'), student=self.other_student)

        changed = refresh_overdue_statuses(academic_year=YEAR, due_date_passed=True)

        self.assertEqual(changed, 1)
        self.assertEqual(FeeAccount.objects.get(student=self.student).status, FeeAccount.STATUS_OVERDUE)
        self.assertEqual(FeeAccount.objects.get(student=self.other_student).status, FeeAccount.STATUS_PAID)

        changed = refresh_overdue_statuses(academic_year=YEAR, due_date_passed=False)
        self.assertEqual(changed, 1)
        self.assertEqual(FeeAccount.objects.get(student=self.student).status, FeeAccount.STATUS_PARTIAL)

    @override_settings(FEES_DUE_MONTH=12, FEES_DUE_DAY=10)
    def test_refresh_command(self):
        sync_fee_accounts_for_structure(self.structure)
        out = StringIO()

        call_command('refresh_fee_statuses', year=YEAR, as_of='2026-01-01', stdout=out)

        self.assertIn('2 changed', out.getvalue())
        self.assertFalse(FeeAccount.objects.exclude(status=FeeAccount.STATUS_OVERDUE).exists())


class FeeStatsTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        FeeStructure.objects.create(academic_year=YEAR, class_name='Class 6', total_fee=Decimal('2000.00'))
        self.senior = Student.objects.create(admission_number='FEE-030', first_name='Zoya', class_name='Class 6')
        self.pay(Decimal('1000.00'))
        self.pay(Decimal('250.00'), student=self.other_student)
        self.pay(Decimal('500.00'), student=self.senior, paid_months=['April'])

    def test_statistics(self):
        stats = fee_account_statistics(academic_year=YEAR)

        self.assertEqual(stats['total_students'], 3)
        self.assertEqual(stats['total_expected'], Decimal('4000.00'))
        self.assertEqual(stats['total_collected'], Decimal('1750.00'))
        self.assertEqual(stats['total_pending'], Decimal('2250.00'))
        self.assertEqual(stats['collection_rate'], Decimal('43.75'))
        self.assertEqual(stats['status_counts']['paid'], 1)
        self.assertEqual(stats['status_counts']['partial'], 2)

    def test_statistics_for_empty_year(self):
        stats = fee_account_statistics(academic_year='2001-2002')
        self.assertEqual(stats['total_students'], 0)
        self.assertEqual(stats['collection_rate'], Decimal('0.00'))

    def test_pending_list_is_sorted_by_balance(self):
        rows = students_with_pending_fees(academic_year=YEAR)
        self.assertEqual([row['admission_number'] for row in rows], ['FEE-030', 'FEE-002'])

        rows = students_with_pending_fees(academic_year=YEAR, class_name='Class 5')
        self.assertEqual([row['admission_number'] for row in rows], ['FEE-002'])

        rows = students_with_pending_fees(academic_year=YEAR, limit=1)
        self.assertEqual(len(rows), 1)

    def test_class_wise_summary(self):
        summary = {row['class_name']: row for row in class_wise_pending_summary(academic_year=YEAR)}

        self.assertEqual(summary['Class 5']['total_students'], 2)
        self.assertEqual(summary['Class 5']['students_pending'], 1)
        self.assertEqual(summary['Class 5']['total_pending'], Decimal('750.00'))
        self.assertEqual(summary['Class 6']['total_collected'], Decimal('500.00'))

    def test_student_history(self):
        history = student_fee_history(student_id=self.senior.id)

        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]['academic_year'], YEAR)
        self.assertEqual(history[0]['paid_months'], ['April'])
        self.assertEqual(len(history[0]['transactions']), 1)
        self.assertEqual(history[0]['transactions'][0]['amount_paid'], Decimal('500.00'))

    def test_transactions_for_year_newest_first(self):
        self.pay(Decimal('50.00'), student=self.other_student, academic_year='2024-2025', total_fee=Decimal('900.00'))

        rows = fee_transactions(academic_year=YEAR)
        self.assertEqual([row['admission_number'] for row in rows], ['FEE-030', 'FEE-002', 'FEE-001'])
        self.assertEqual(rows[0]['paid_months'], ['April'])

        rows = fee_transactions(academic_year=YEAR, class_name='Class 5', limit=1)
        self.assertEqual([row['admission_number'] for row in rows], ['FEE-002'])

        self.assertEqual(fee_transactions(academic_year=YEAR, payment_mode=FeeTransaction.MODE_UPI), [])
        self.assertEqual(len(fee_transactions(academic_year='2024-2025')), 1)

    def test_recent_collections(self):
        self.pay(Decimal('50.00'), student=self.other_student, academic_year='2024-2025', total_fee=Decimal('900.00'))

        rows = recent_fee_collections(limit=2)
        self.assertEqual([row['academic_year'] for row in rows], ['2024-2025', YEAR])
        self.assertEqual(rows[0]['amount_paid'], Decimal('50.00'))

        rows = recent_fee_collections(academic_year=YEAR)
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[0]['student_name'], self.senior.full_name)


class FeeReceiptTests(FeesBaseTestCase):
    def test_receipt_pdf_is_generated(self):
        result = self.pay(Decimal('400.00'), paid_months=['April', 'May'], collected_by=self.office)

        pdf_bytes = generate_fee_receipt_pdf(result.transaction, school_name='Green Valley School')

        self.assertTrue(pdf_bytes.startswith(b'%PDF'))


class SeedCommandTests(TestCase):
    def test_seed_creates_consistent_ledger(self):
        out = StringIO()
        call_command('seed_fees', year=YEAR, students_per_class=2, seed=7, stdout=out)

        self.assertIn('Seeding complete.', out.getvalue())
        self.assertEqual(FeeStructure.objects.filter(academic_year=YEAR).count(), 8)
        self.assertEqual(FeeAccount.objects.filter(academic_year=YEAR).count(), 16)
        for account in FeeAccount.objects.all():
            self.assertEqual(account.total_paid, _sum_of_transactions(account))
            self.assertEqual(account.balance, account.total_fee - account.total_paid)

    def test_seed_rejects_bad_year(self):
        with self.assertRaises(CommandError):
            call_command('seed_fees', year='next year', stdout=StringIO())


@mock.patch('apps.core.fees.views.is_due_date_passed', return_value=False)
class FeeViewTests(FeesBaseTestCase):
    def post_payment(self, **data):
        payload = {
            'student_id': self.student.id,
            'academic_year': YEAR,
            'amount': '400.00',
            'payment_mode': 'cash',
        }
        payload.update(data)
        return self.client.post(reverse('fee_payment_collect'), payload)

    def test_anonymous_user_is_redirected_to_login(self, _):
        response = self.post_payment()
        self.assertEqual(response.status_code, 302)
        self.assertFalse(FeeTransaction.objects.exists())

    def test_teacher_cannot_collect_fees(self, _):
        self.client.login(username='fees_teacher', password='pass12345')
        response = self.post_payment()
        self.assertEqual(response.status_code, 403)
        self.assertFalse(response.json()['success'])

    def test_office_staff_can_collect_fees(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.post_payment(paid_months=['April', 'May'])

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['receiptNumber'], '2526-000001')
        self.assertEqual(body['newBalance'], '600.00')
        self.assertEqual(body['newStatus'], 'partial')

        fee_transaction = FeeTransaction.objects.get(pk=body['transactionId'])
        self.assertEqual(fee_transaction.collected_by, self.office)
        self.assertEqual(fee_transaction.paid_months, ['April', 'May'])
        self.assertTrue(AuditLog.objects.filter(action='fees.payment_recorded', user=self.office).exists())

    def test_json_body_is_accepted(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.client.post(
            reverse('fee_payment_collect'),
            {'student_id': self.student.id, 'academic_year': YEAR, 'amount': '1000', 'payment_mode': 'upi'},
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['newStatus'], 'paid')

    def test_invalid_amount_returns_400(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.post_payment(amount='-50')

        self.assertEqual(response.status_code, 400)
        self.assertIn('amount', response.json()['errors'])
        self.assertFalse(FeeAccount.objects.exists())

    def test_unknown_student_returns_404(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.post_payment(student_id=999999)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['step'], 'resolving fee account')

    def test_get_is_not_allowed_for_payments(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.client.get(reverse('fee_payment_collect'))
        self.assertEqual(response.status_code, 405)

    def test_office_staff_cannot_delete_payments(self, _):
        result = self.pay(Decimal('400.00'))
        self.client.login(username='fees_office', password='pass12345')

        response = self.client.post(reverse('fee_payment_delete', args=[result.transaction.id]))

        self.assertEqual(response.status_code, 403)
        self.assertTrue(FeeTransaction.objects.filter(pk=result.transaction.id).exists())

    def test_admin_deletes_payment(self, _):
        result = self.pay(Decimal('400.00'))
        self.client.login(username='fees_admin', password='pass12345')

        response = self.client.post(
            reverse('fee_payment_delete', args=[result.transaction.id]),
            {'reason': 'Entered twice'},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['amountReversed'], '400.00')
        self.assertEqual(body['newStatus'], 'pending')
        audit = AuditLog.objects.get(action='fees.payment_deleted')
        self.assertIn(result.receipt_number, audit.old_value)
        self.assertIn('Entered twice', audit.description)

        response = self.client.post(reverse('fee_payment_delete', args=[result.transaction.id]))
        self.assertEqual(response.status_code, 404)

    def test_account_detail(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.client.get(reverse('fee_account_detail', args=[self.student.id]), {'year': YEAR})
        self.assertEqual(response.json(), {'account': None})

        self.pay(Decimal('400.00'))
        response = self.client.get(reverse('fee_account_detail', args=[self.student.id]), {'year': YEAR})
        account = response.json()['account']
        self.assertEqual(account['totalPaid'], '400.00')
        self.assertEqual(account['balance'], '600.00')
        self.assertEqual(account['status'], 'partial')

    def test_receipt_pdf_download(self, _):
        result = self.pay(Decimal('400.00'))
        self.client.login(username='fees_office', password='pass12345')

        response = self.client.get(reverse('fee_receipt_pdf', args=[result.receipt_number]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertIn(result.receipt_number, response['Content-Disposition'])

    def test_admin_creates_structure(self, _):
        Student.objects.create(admission_number='FEE-040', first_name='Neel', class_name='Class 8')
        self.client.login(username='fees_admin', password='pass12345')

        response = self.client.post(
            reverse('fee_structure_list'),
            {'academic_year': YEAR, 'class_name': 'Class 8', 'total_fee': '1800.00', 'is_active': True},
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['accountsCreated'], 1)
        self.assertTrue(AuditLog.objects.filter(action='fees.fee_structure_created').exists())

    def test_office_staff_cannot_manage_structures(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.client.get(reverse('fee_structure_list'), {'year': YEAR})
        self.assertEqual(response.status_code, 403)

    def test_structure_update_and_copy(self, _):
        self.client.login(username='fees_admin', password='pass12345')

        response = self.client.post(
            reverse('fee_structure_update', args=[self.structure.id]),
            {'total_fee': '1100.00', 'breakdown': {'tuition': '1100.00'}, 'is_active': True},
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['structure']['totalFee'], '1100.00')

        response = self.client.post(
            reverse('fee_structure_copy'),
            {'from_year': YEAR, 'to_year': '2026-2027'},
        )
        self.assertEqual(response.json(), {'success': True, 'copied': 1})

        response = self.client.post(
            reverse('fee_structure_copy'),
            {'from_year': YEAR, 'to_year': '2026-2027'},
        )
        self.assertEqual(response.status_code, 400)

    def test_structure_sync(self, _):
        self.client.login(username='fees_admin', password='pass12345')
        response = self.client.post(reverse('fee_structure_sync', args=[self.structure.id]))
        self.assertEqual(response.json(), {'success': True, 'created': 2, 'skipped': 0, 'total': 2})

    def test_reports(self, _):
        self.pay(Decimal('400.00'))
        self.client.login(username='fees_office', password='pass12345')

        stats = self.client.get(reverse('fee_statistics'), {'year': YEAR}).json()
        self.assertEqual(stats['total_collected'], '400.00')

        pending = self.client.get(reverse('fee_pending'), {'year': YEAR, 'limit': '5'}).json()
        self.assertEqual(pending['count'], 1)

        classes = self.client.get(reverse('fee_class_summary'), {'year': YEAR}).json()
        self.assertEqual(classes['classes'][0]['class_name'], 'Class 5')

        history = self.client.get(reverse('fee_student_history', args=[self.student.id])).json()
        self.assertEqual(history['history'][0]['total_paid'], '400.00')

    def test_oversized_amount_returns_400(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.post_payment(amount='123456789012.00')

        self.assertEqual(response.status_code, 400)
        self.assertFalse(FeeAccount.objects.exists())

    def test_admin_deletes_structure(self, _):
        self.client.login(username='fees_admin', password='pass12345')

        response = self.client.post(reverse('fee_structure_delete', args=[self.structure.id]))

        self.assertEqual(response.status_code, 200)
        self.assertFalse(FeeStructure.objects.filter(pk=self.structure.id).exists())
        entry = AuditLog.objects.get(action='fees.fee_structure_deleted')
        self.assertEqual(entry.entity_id, str(self.structure.id))
        self.assertIn('Class 5', entry.old_value)

        response = self.client.post(reverse('fee_structure_delete', args=[self.structure.id]))
        self.assertEqual(response.status_code, 404)

    def test_office_staff_cannot_delete_structures(self, _):
        self.client.login(username='fees_office', password='pass12345')
        response = self.client.post(reverse('fee_structure_delete', args=[self.structure.id]))

        self.assertEqual(response.status_code, 403)
        self.assertTrue(FeeStructure.objects.filter(pk=self.structure.id).exists())

    def test_transaction_listing_and_recent_collections(self, _):
        self.pay(Decimal('400.00'), collected_by=self.office)
        self.pay(Decimal('100.00'), student=self.other_student, payment_mode=FeeTransaction.MODE_UPI)
        self.client.login(username='fees_office', password='pass12345')

        listing = self.client.get(reverse('fee_transaction_list'), {'year': YEAR, 'payment_mode': 'cash'}).json()
        self.assertEqual(listing['count'], 1)
        self.assertEqual(listing['transactions'][0]['amount_paid'], '400.00')
        self.assertEqual(listing['transactions'][0]['collected_by'], 'fees_office')

        recent = self.client.get(reverse('fee_recent_collections'), {'limit': '1'}).json()
        self.assertEqual(recent['count'], 1)
        self.assertEqual(recent['transactions'][0]['admission_number'], 'FEE-002')

    def test_teacher_cannot_list_transactions(self, _):
        self.client.login(username='fees_teacher', password='pass12345')
        response = self.client.get(reverse('fee_transaction_list'))
        self.assertEqual(response.status_code, 403)


class FeeAccountAdminTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.superuser = get_user_model().objects.create_superuser('fees_root', 'root@example.com', 'pass12345')
        self.pay(Decimal('400.00'))
        self.account = FeeAccount.objects.get(student=self.student, academic_year=YEAR)
        self.client.force_login(self.superuser)

    def test_totals_cannot_be_edited_in_admin(self):
        response = self.client.post(
            reverse('admin:fees_feeaccount_change', args=[self.account.pk]),
            {'total_fee': '2000.00', 'total_paid': '0.00', 'balance': '0.00', 'status': 'paid'},
        )

        self.assertIn(response.status_code, (200, 302))
        self.account.refresh_from_db()
        self.assertEqual(self.account.total_fee, Decimal('1000.00'))
        self.assertEqual(self.account.total_paid, Decimal('400.00'))
        self.assertEqual(self.account.balance, Decimal('600.00'))
        self.assertEqual(self.account.status, FeeAccount.STATUS_PARTIAL)

    def test_accounts_cannot_be_added_or_deleted_in_admin(self):
        model_admin = FeeAccountAdmin(FeeAccount, admin.site)
        request = RequestFactory().get('/admin/fees/feeaccount/')
        request.user = self.superuser

        self.assertFalse(model_admin.has_add_permission(request))
        self.assertFalse(model_admin.has_delete_permission(request, self.account))
        self.assertEqual(self.client.get(reverse('admin:fees_feeaccount_add')).status_code, 403)
        self.assertEqual(
            self.client.post(reverse('admin:fees_feeaccount_delete', args=[self.account.pk]), {'post': 'yes'}).status_code,
            403,
        )
        self.assertTrue(FeeAccount.objects.filter(pk=self.account.pk).exists())
