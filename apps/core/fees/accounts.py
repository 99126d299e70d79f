"""
Fee account storage.

The account row is the only shared mutable state in the ledger. ``total_paid``
changes only through :func:`apply_delta`, which increments it in a single UPDATE
statement so that concurrent collectors cannot lose updates. ``balance`` and
``status`` are then recomputed from the stored totals under a row lock.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.core.students.models import Student

from .exceptions import InvalidStateError, NotFoundError
from .models import FeeAccount, FeeStructure, order_months

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
# Largest value a max_digits=12, decimal_places=2 column holds.
MAX_AMOUNT = Decimal('9999999999.99')


def to_decimal(value) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value if value not in (None, '') else '0')
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"'{value}' is not a valid amount.")


def quantize(value) -> Decimal:
    value = to_decimal(value)
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"'{value}' is not a valid amount.")


def derive_status(total_fee, total_paid, due_date_passed: bool = False) -> str:
    """Payment status as a pure function of the account arithmetic and the due-date flag."""
    balance = quantize(total_fee) - quantize(total_paid)
    if balance <= 0:
        return FeeAccount.STATUS_PAID
    if due_date_passed:
        return FeeAccount.STATUS_OVERDUE
    if quantize(total_paid) == 0:
        return FeeAccount.STATUS_PENDING
    return FeeAccount.STATUS_PARTIAL


def get_account(*, student_id, academic_year) -> FeeAccount | None:
    return FeeAccount.objects.select_related('student').filter(
        student_id=student_id,
        academic_year=academic_year,
    ).first()


def active_structure_for(*, class_name, academic_year) -> FeeStructure | None:
    return FeeStructure.objects.filter(
        class_name=class_name,
        academic_year=academic_year,
        is_active=True,
    ).first()


def get_or_create_account(*, student_id, academic_year, total_fee=None, due_date_passed=False):
    """
    Return ``(account, created)`` for the student and academic year.

    A missing account is opened with nothing paid. Its total fee is ``total_fee``
    when given, otherwise the active fee structure of the student's class.
    """
    student = Student.objects.filter(pk=student_id).first()
    if not student:
        raise NotFoundError(f"Student {student_id} does not exist.")

    account = get_account(student_id=student.id, academic_year=academic_year)
    if account:
        return account, False

    if total_fee is None:
        structure = active_structure_for(class_name=student.class_name, academic_year=academic_year)
        if not structure:
            raise NotFoundError(
                f"No fee account or fee structure for {student.admission_number} "
                f"({student.class_name}) in {academic_year}."
            )
        total_fee = structure.total_fee

    total_fee = quantize(total_fee)
    if total_fee < 0:
        raise ValidationError('Total fee cannot be negative.')
    if total_fee > MAX_AMOUNT:
        raise ValidationError(f'Total fee cannot exceed {MAX_AMOUNT}.')

    account, created = FeeAccount.objects.get_or_create(
        student=student,
        academic_year=academic_year,
        defaults={
            'total_fee': total_fee,
            'total_paid': ZERO,
            'balance': total_fee,
            'status': derive_status(total_fee, ZERO, due_date_passed),
        },
    )
    if created:
        logger.info(
            'Opened fee account %s for student %s (%s), total fee %s',
            account.pk, student.admission_number, academic_year, total_fee,
        )
    return account, created


def apply_delta(*, account_id, amount_delta, due_date_passed=False) -> FeeAccount:
    """
    Add ``amount_delta`` to the account's ``total_paid`` and refresh balance and status.

    Positive deltas record payments, negative ones reverse them. The increment is
    a single conditional UPDATE, so it never reads a stale total. The balance is
    then rewritten from the stored ``total_fee`` and ``total_paid`` while the row
    is locked.
    """
    amount_delta = quantize(amount_delta)

    rows = FeeAccount.objects.filter(pk=account_id, total_paid__gte=-amount_delta)
    if amount_delta > 0:
        rows = rows.filter(total_paid__lte=MAX_AMOUNT - amount_delta)

    with transaction.atomic():
        updated = rows.update(
            total_paid=F('total_paid') + amount_delta,
            updated_at=timezone.now(),
        )

        if not updated:
            account = FeeAccount.objects.filter(pk=account_id).first()
            if account is None:
                raise NotFoundError(f"Fee account {account_id} does not exist.")
            if amount_delta > 0:
                raise InvalidStateError(
                    f"Applying {amount_delta} to fee account {account_id} would make total paid "
                    f"exceed {MAX_AMOUNT} (currently {account.total_paid})."
                )
            raise InvalidStateError(
                f"Applying {amount_delta} to fee account {account_id} would make total paid "
                f"negative (currently {account.total_paid})."
            )

        account = FeeAccount.objects.select_for_update().get(pk=account_id)
        account.balance = quantize(account.total_fee) - quantize(account.total_paid)
        account.status = derive_status(account.total_fee, account.total_paid, due_date_passed)
        account.save(update_fields=['balance', 'status', 'updated_at'])

    return account


def refresh_status(account: FeeAccount, *, due_date_passed: bool) -> bool:
    """Recompute and persist the status; returns whether it changed."""
    status = derive_status(account.total_fee, account.total_paid, due_date_passed)
    if status == account.status:
        return False

    account.status = status
    account.save(update_fields=['status', 'updated_at'])
    return True


def refresh_paid_months(account: FeeAccount) -> FeeAccount:
    months = []
    for paid_months in account.transactions.values_list('paid_months', flat=True):
        months.extend(paid_months or [])

    ordered = order_months(months)
    if ordered != account.paid_months:
        account.paid_months = ordered
        account.save(update_fields=['paid_months', 'updated_at'])
    return account
