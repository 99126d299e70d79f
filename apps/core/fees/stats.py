from decimal import Decimal

from django.db.models import Count, Q, Sum

from .accounts import ZERO, quantize
from .models import FeeAccount, FeeTransaction


def _money(value):
    return quantize(value or ZERO)


def fee_account_statistics(*, academic_year):
    rows = FeeAccount.objects.filter(academic_year=academic_year)
    totals = rows.aggregate(
        total_expected=Sum('total_fee'),
        total_collected=Sum('total_paid'),
        total_pending=Sum('balance', filter=Q(balance__gt=0)),
        total_students=Count('id'),
        paid=Count('id', filter=Q(status=FeeAccount.STATUS_PAID)),
        partial=Count('id', filter=Q(status=FeeAccount.STATUS_PARTIAL)),
        pending=Count('id', filter=Q(status=FeeAccount.STATUS_PENDING)),
        overdue=Count('id', filter=Q(status=FeeAccount.STATUS_OVERDUE)),
    )

    expected = _money(totals['total_expected'])
    collected = _money(totals['total_collected'])
    collection_rate = ZERO
    if expected > 0:
        collection_rate = quantize(collected * Decimal('100') / expected)

    return {
        'academic_year': academic_year,
        'total_students': totals['total_students'],
        'total_expected': expected,
        'total_collected': collected,
        'total_pending': _money(totals['total_pending']),
        'collection_rate': collection_rate,
        'status_counts': {
            FeeAccount.STATUS_PAID: totals['paid'],
            FeeAccount.STATUS_PARTIAL: totals['partial'],
            FeeAccount.STATUS_PENDING: totals['pending'],
            FeeAccount.STATUS_OVERDUE: totals['overdue'],
        },
    }


def students_with_pending_fees(*, academic_year, class_name=None, limit=None):
    """Accounts with an outstanding balance, largest balance first."""
    rows = FeeAccount.objects.select_related('student').filter(
        academic_year=academic_year,
        balance__gt=0,
    )
    if class_name:
        rows = rows.filter(student__class_name=class_name)
    rows = rows.order_by('-balance', 'student__admission_number')
    if limit:
        rows = rows[:limit]

    return [
        {
            'student_id': account.student_id,
            'admission_number': account.student.admission_number,
            'student_name': account.student.full_name,
            'class_name': account.student.class_name,
            'section': account.student.section,
            'guardian_phone': account.student.guardian_phone,
            'total_fee': account.total_fee,
            'total_paid': account.total_paid,
            'balance': account.balance,
            'status': account.status,
        }
        for account in rows
    ]


def class_wise_pending_summary(*, academic_year):
    rows = (
        FeeAccount.objects.filter(academic_year=academic_year)
        .values('student__class_name')
        .annotate(
            total_students=Count('id'),
            total_expected=Sum('total_fee'),
            total_collected=Sum('total_paid'),
            total_pending=Sum('balance', filter=Q(balance__gt=0)),
            students_pending=Count('id', filter=Q(balance__gt=0)),
        )
        .order_by('student__class_name')
    )

    return [
        {
            'class_name': row['student__class_name'],
            'total_students': row['total_students'],
            'students_pending': row['students_pending'],
            'total_expected': _money(row['total_expected']),
            'total_collected': _money(row['total_collected']),
            'total_pending': _money(row['total_pending']),
        }
        for row in rows
    ]


def student_fee_history(*, student_id):
    accounts = FeeAccount.objects.filter(student_id=student_id).order_by('-academic_year')
    transactions = FeeTransaction.objects.filter(student_id=student_id).order_by('-transaction_date', '-id')

    by_year = {}
    for fee_transaction in transactions:
        by_year.setdefault(fee_transaction.academic_year, []).append({
            'id': fee_transaction.id,
            'receipt_number': fee_transaction.receipt_number,
            'amount_paid': fee_transaction.amount_paid,
            'payment_mode': fee_transaction.payment_mode,
            'payment_for': fee_transaction.payment_for,
            'paid_months': fee_transaction.paid_months,
            'transaction_date': fee_transaction.transaction_date,
        })

    return [
        {
            'academic_year': account.academic_year,
            'total_fee': account.total_fee,
            'total_paid': account.total_paid,
            'balance': account.balance,
            'status': account.status,
            'paid_months': account.paid_months,
            'transactions': by_year.get(account.academic_year, []),
        }
        for account in accounts
    ]


def _transaction_row(fee_transaction):
    student = fee_transaction.student
    return {
        'id': fee_transaction.id,
        'receipt_number': fee_transaction.receipt_number,
        'student_id': student.id,
        'admission_number': student.admission_number,
        'student_name': student.full_name,
        'class_name': student.class_name,
        'section': student.section,
        'academic_year': fee_transaction.academic_year,
        'amount_paid': fee_transaction.amount_paid,
        'payment_mode': fee_transaction.payment_mode,
        'payment_for': fee_transaction.payment_for,
        'paid_months': fee_transaction.paid_months,
        'collected_by': fee_transaction.collected_by.username if fee_transaction.collected_by else None,
        'transaction_date': fee_transaction.transaction_date,
    }


def fee_transactions(*, academic_year, class_name=None, payment_mode=None, limit=None):
    """Payments recorded against the academic year, newest first."""
    rows = FeeTransaction.objects.select_related('student', 'collected_by').filter(academic_year=academic_year)
    if class_name:
        rows = rows.filter(student__class_name=class_name)
    if payment_mode:
        rows = rows.filter(payment_mode=payment_mode)
    rows = rows.order_by('-transaction_date', '-id')
    if limit:
        rows = rows[:limit]

    return [_transaction_row(fee_transaction) for fee_transaction in rows]


def recent_fee_collections(*, academic_year=None, limit=5):
    rows = FeeTransaction.objects.select_related('student', 'collected_by')
    if academic_year:
        rows = rows.filter(academic_year=academic_year)
    return [_transaction_row(fee_transaction) for fee_transaction in rows.order_by('-transaction_date', '-id')[:limit]]
