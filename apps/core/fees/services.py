"""
Fee ledger operations.

Recording a payment opens (or reuses) the student's fee account, writes an
immutable transaction with a fresh receipt number and moves the account totals,
all inside one database transaction. Deleting a payment is the compensating
action: the transaction row goes away and the account totals move back.

The academic year and the due-date flag are always passed in by the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from apps.core.students.models import Student

from . import accounts, payments
from .accounts import MAX_AMOUNT, quantize, to_decimal
from .exceptions import LedgerError, NotFoundError, StorageError
from .models import FeeAccount, FeeStructure, FeeTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    receipt_number: str
    new_balance: Decimal
    new_status: str
    transaction: FeeTransaction
    account: FeeAccount


@dataclass(frozen=True)
class ReversalResult:
    receipt_number: str
    amount_reversed: Decimal
    new_balance: Decimal
    new_status: str
    account: FeeAccount


def _validated_amount(amount) -> Decimal:
    amount = to_decimal(amount)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError('Payment amount must be a positive number.')
    if amount > MAX_AMOUNT:
        raise ValidationError(f'Payment amount cannot exceed {MAX_AMOUNT}.')
    if amount != quantize(amount):
        raise ValidationError('Payment amount cannot have more than two decimal places.')
    return quantize(amount)


def _fail(exc, step, action):
    """Attach the failing step to ledger and validation errors and wrap database errors."""
    if isinstance(exc, (LedgerError, ValidationError)):
        exc.step = getattr(exc, 'step', '') or step
        logger.warning('%s failed while %s: %s', action, step, exc)
        return exc

    logger.exception('%s failed while %s', action, step)
    return StorageError(f"{action} failed while {step}.", step=step)


def record_payment(
    *,
    student_id,
    academic_year,
    amount,
    payment_mode,
    payment_for='',
    paid_months=None,
    remarks='',
    collected_by=None,
    transaction_date=None,
    total_fee=None,
    due_date_passed=False,
) -> PaymentResult:
    amount = _validated_amount(amount)

    step = 'resolving fee account'
    try:
        with transaction.atomic():
            account, _ = accounts.get_or_create_account(
                student_id=student_id,
                academic_year=academic_year,
                total_fee=total_fee,
                due_date_passed=due_date_passed,
            )

            step = 'creating fee transaction'
            fee_transaction = payments.create_transaction(
                account=account,
                amount_paid=amount,
                payment_mode=payment_mode,
                payment_for=payment_for,
                paid_months=paid_months,
                remarks=remarks,
                collected_by=collected_by,
                transaction_date=transaction_date,
            )

            step = 'applying payment to fee account'
            account = accounts.apply_delta(
                account_id=account.pk,
                amount_delta=amount,
                due_date_passed=due_date_passed,
            )

            step = 'updating paid months'
            accounts.refresh_paid_months(account)
    except (LedgerError, ValidationError) as exc:
        _fail(exc, step, 'Recording payment')
        raise
    except DatabaseError as exc:
        raise _fail(exc, step, 'Recording payment') from exc

    logger.info(
        'Recorded payment %s of %s for student %s (%s); balance %s, status %s',
        fee_transaction.receipt_number, amount, student_id, academic_year,
        account.balance, account.status,
    )
    return PaymentResult(
        receipt_number=fee_transaction.receipt_number,
        new_balance=quantize(account.balance),
        new_status=account.status,
        transaction=fee_transaction,
        account=account,
    )


def delete_payment(*, transaction_id, due_date_passed=False) -> ReversalResult:
    step = 'deleting fee transaction'
    try:
        with transaction.atomic():
            deleted = payments.delete_transaction(transaction_id)

            step = 'reverting fee account'
            account = accounts.apply_delta(
                account_id=deleted.account_id,
                amount_delta=-deleted.amount_paid,
                due_date_passed=due_date_passed,
            )

            step = 'updating paid months'
            accounts.refresh_paid_months(account)
    except (LedgerError, ValidationError) as exc:
        _fail(exc, step, 'Deleting payment')
        raise
    except DatabaseError as exc:
        raise _fail(exc, step, 'Deleting payment') from exc

    logger.info(
        'Reversed payment %s of %s; account %s balance %s, status %s',
        deleted.receipt_number, deleted.amount_paid, account.pk, account.balance, account.status,
    )
    return ReversalResult(
        receipt_number=deleted.receipt_number,
        amount_reversed=deleted.amount_paid,
        new_balance=quantize(account.balance),
        new_status=account.status,
        account=account,
    )


def get_account(*, student_id, academic_year) -> FeeAccount | None:
    return accounts.get_account(student_id=student_id, academic_year=academic_year)


arecord_payment = sync_to_async(record_payment)
adelete_payment = sync_to_async(delete_payment)
aget_account = sync_to_async(get_account)


@transaction.atomic
def refresh_overdue_statuses(*, academic_year, due_date_passed) -> int:
    changed = 0
    rows = FeeAccount.objects.select_for_update().filter(academic_year=academic_year).order_by('id')
    for account in rows:
        if accounts.refresh_status(account, due_date_passed=due_date_passed):
            changed += 1

    logger.info('Refreshed fee statuses for %s: %s accounts changed', academic_year, changed)
    return changed


# Fee structures

def sync_fee_accounts_for_structure(structure: FeeStructure) -> dict:
    """Open accounts for active students of the structure's class that do not have one yet."""
    if not structure.is_active:
        raise ValidationError('Fee structure is inactive.')

    student_ids = list(
        Student.objects.filter(
            class_name=structure.class_name,
            is_active=True,
        ).values_list('id', flat=True)
    )

    created = 0
    skipped = 0
    with transaction.atomic():
        for student_id in student_ids:
            _, was_created = accounts.get_or_create_account(
                student_id=student_id,
                academic_year=structure.academic_year,
                total_fee=structure.total_fee,
            )
            if was_created:
                created += 1
            else:
                skipped += 1

    logger.info(
        'Synced fee accounts for %s (%s): %s created, %s skipped',
        structure.class_name, structure.academic_year, created, skipped,
    )
    return {'created': created, 'skipped': skipped, 'total': len(student_ids)}


@transaction.atomic
def create_fee_structure(*, academic_year, class_name, total_fee, breakdown=None) -> dict:
    class_name = (class_name or '').strip()
    if FeeStructure.objects.filter(academic_year=academic_year, class_name=class_name).exists():
        raise ValidationError(f"Fee structure already exists for {class_name} in {academic_year}.")

    structure = FeeStructure(
        academic_year=academic_year,
        class_name=class_name,
        total_fee=quantize(total_fee),
        breakdown=breakdown or {},
        is_active=True,
    )
    structure.full_clean()
    structure.save()

    synced = sync_fee_accounts_for_structure(structure)
    return {'structure': structure, 'accounts_created': synced['created']}


@transaction.atomic
def update_fee_structure(*, structure: FeeStructure, total_fee=None, breakdown=None, is_active=None):
    """Existing accounts keep the total fee they were opened with."""
    if total_fee is not None:
        structure.total_fee = quantize(total_fee)
    if breakdown is not None:
        structure.breakdown = breakdown
    if is_active is not None:
        structure.is_active = is_active

    structure.full_clean()
    structure.save()
    return structure


@transaction.atomic
def copy_fee_structures(*, from_year, to_year) -> int:
    if from_year == to_year:
        raise ValidationError('Source and target academic years must differ.')

    source = list(FeeStructure.objects.filter(academic_year=from_year, is_active=True).order_by('class_name'))
    if not source:
        raise NotFoundError(f"No fee structures found for {from_year}.")

    if FeeStructure.objects.filter(academic_year=to_year).exists():
        raise ValidationError(
            f"Fee structures already exist for {to_year}. Delete them first to copy from {from_year}."
        )

    FeeStructure.objects.bulk_create([
        FeeStructure(
            academic_year=to_year,
            class_name=row.class_name,
            total_fee=row.total_fee,
            breakdown=row.breakdown,
            is_active=True,
        )
        for row in source
    ])
    logger.info('Copied %s fee structures from %s to %s', len(source), from_year, to_year)
    return len(source)


@transaction.atomic
def delete_fee_structure(*, structure: FeeStructure) -> None:
    """Accounts already opened from the structure keep their total fee and payments."""
    class_name, academic_year = structure.class_name, structure.academic_year
    structure.delete()
    logger.info('Deleted fee structure for %s (%s)', class_name, academic_year)


def auto_create_account_for_student(*, student: Student, academic_year) -> FeeAccount | None:
    if not student.is_active:
        return None

    structure = accounts.active_structure_for(class_name=student.class_name, academic_year=academic_year)
    if not structure:
        logger.info('No fee structure for %s - %s; skipping account creation', student.class_name, academic_year)
        return None

    account, _ = accounts.get_or_create_account(
        student_id=student.pk,
        academic_year=academic_year,
        total_fee=structure.total_fee,
    )
    return account
