"""
Fee transaction storage and receipt numbering.

Receipt numbers look like ``2526-000123``: the short academic year followed by a
per-year sequence that only ever moves forward, so a deleted receipt's number is
never handed out again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .accounts import quantize
from .conf import academic_year_short, receipt_sequence_digits
from .exceptions import NotFoundError
from .models import ACADEMIC_MONTHS, FeeAccount, FeeTransaction, ReceiptSequence, order_months

logger = logging.getLogger(__name__)

PAYMENT_MODES = {value for value, _ in FeeTransaction.PAYMENT_MODE_CHOICES}


@dataclass(frozen=True)
class DeletedTransaction:
    id: int
    receipt_number: str
    amount_paid: Decimal
    account_id: int
    student_id: int
    academic_year: str


def format_receipt_number(academic_year: str, sequence: int) -> str:
    return f"{academic_year_short(academic_year)}-{sequence:0{receipt_sequence_digits()}d}"


def next_receipt_number(academic_year: str) -> str:
    with transaction.atomic():
        sequence, _ = ReceiptSequence.objects.get_or_create(academic_year=academic_year)
        ReceiptSequence.objects.filter(pk=sequence.pk).update(
            last_number=F('last_number') + 1,
            updated_at=timezone.now(),
        )
        last_number = ReceiptSequence.objects.select_for_update().values_list(
            'last_number', flat=True,
        ).get(pk=sequence.pk)
    return format_receipt_number(academic_year, last_number)


def _clean_paid_months(paid_months):
    paid_months = list(paid_months or [])
    unknown = [month for month in paid_months if month not in ACADEMIC_MONTHS]
    if unknown:
        raise ValidationError(f"Unknown month labels: {', '.join(map(str, unknown))}.")
    return order_months(paid_months)


def create_transaction(
    *,
    account: FeeAccount,
    amount_paid,
    payment_mode,
    payment_for='',
    paid_months=None,
    remarks='',
    collected_by=None,
    transaction_date=None,
) -> FeeTransaction:
    amount_paid = quantize(amount_paid)
    if amount_paid <= 0:
        raise ValidationError('Payment amount must be greater than zero.')

    if payment_mode not in PAYMENT_MODES:
        raise ValidationError(f"Unsupported payment mode '{payment_mode}'.")

    paid_months = _clean_paid_months(paid_months)

    return FeeTransaction.objects.create(
        account=account,
        student_id=account.student_id,
        academic_year=account.academic_year,
        receipt_number=next_receipt_number(account.academic_year),
        amount_paid=amount_paid,
        payment_mode=payment_mode,
        payment_for=(payment_for or '').strip()[:100],
        paid_months=paid_months,
        remarks=(remarks or '').strip(),
        collected_by=collected_by,
        transaction_date=transaction_date or timezone.now(),
    )


def delete_transaction(transaction_id) -> DeletedTransaction:
    with transaction.atomic():
        row = FeeTransaction.objects.select_for_update().filter(pk=transaction_id).first()
        if row is None:
            raise NotFoundError(f"Fee transaction {transaction_id} does not exist.")

        deleted = DeletedTransaction(
            id=row.pk,
            receipt_number=row.receipt_number,
            amount_paid=quantize(row.amount_paid),
            account_id=row.account_id,
            student_id=row.student_id,
            academic_year=row.academic_year,
        )
        row.delete()

    logger.info('Deleted fee transaction %s (receipt %s)', deleted.id, deleted.receipt_number)
    return deleted
