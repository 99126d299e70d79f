from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.students.models import Student

MONTH_CHOICES = (
    ('April', 'April'),
    ('May', 'May'),
    ('June', 'June'),
    ('July', 'July'),
    ('August', 'August'),
    ('September', 'September'),
    ('October', 'October'),
    ('November', 'November'),
    ('December', 'December'),
    ('January', 'January'),
    ('February', 'February'),
    ('March', 'March'),
)
ACADEMIC_MONTHS = [value for value, _ in MONTH_CHOICES]


def order_months(months):
    """Distinct month labels in academic (April to March) order."""
    wanted = set(months or [])
    return [month for month in ACADEMIC_MONTHS if month in wanted]


class FeeStructure(models.Model):
    academic_year = models.CharField(max_length=20)
    class_name = models.CharField(max_length=50)
    total_fee = models.DecimalField(max_digits=12, decimal_places=2)
    breakdown = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'fee_structures'
        ordering = ['-academic_year', 'class_name']
        constraints = [
            models.UniqueConstraint(
                fields=['academic_year', 'class_name'],
                name='unique_fee_structure_per_class_year',
            ),
            models.CheckConstraint(
                condition=Q(total_fee__gte=0),
                name='fee_structure_total_fee_non_negative',
            ),
        ]

    def clean(self):
        super().clean()
        if self.class_name:
            self.class_name = self.class_name.strip()
        if not self.class_name:
            raise ValidationError({'class_name': 'Class is required.'})
        if self.total_fee is None or self.total_fee < 0:
            raise ValidationError({'total_fee': 'Total fee cannot be negative.'})
        if not isinstance(self.breakdown, dict):
            raise ValidationError({'breakdown': 'Breakdown must be a mapping of fee heads to amounts.'})

    def __str__(self):
        return f"{self.class_name} - {self.academic_year}: {self.total_fee}"


class FeeAccount(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_PARTIAL = 'partial'
    STATUS_PAID = 'paid'
    STATUS_OVERDUE = 'overdue'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_PARTIAL, 'Partial'),
        (STATUS_PAID, 'Paid'),
        (STATUS_OVERDUE, 'Overdue'),
    )

    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='fee_accounts',
    )
    academic_year = models.CharField(max_length=20)
    total_fee = models.DecimalField(max_digits=12, decimal_places=2)
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    balance = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    paid_months = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'fee_accounts'
        ordering = ['-balance', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'academic_year'],
                name='unique_fee_account_per_student_year',
            ),
            models.CheckConstraint(
                condition=Q(total_paid__gte=0),
                name='fee_account_total_paid_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(total_fee__gte=0),
                name='fee_account_total_fee_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['academic_year', 'status'], name='fee_account_year_status_idx'),
        ]

    def __str__(self):
        return f"{self.student.admission_number} - {self.academic_year}"


class FeeTransaction(models.Model):
    MODE_CASH = 'cash'
    MODE_UPI = 'upi'
    MODE_BANK_TRANSFER = 'bank_transfer'
    MODE_CHEQUE = 'cheque'
    MODE_ONLINE = 'online'
    PAYMENT_MODE_CHOICES = (
        (MODE_CASH, 'Cash'),
        (MODE_UPI, 'UPI'),
        (MODE_BANK_TRANSFER, 'Bank Transfer'),
        (MODE_CHEQUE, 'Cheque'),
        (MODE_ONLINE, 'Online'),
    )

    account = models.ForeignKey(
        FeeAccount,
        on_delete=models.PROTECT,
        related_name='transactions',
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='fee_transactions',
    )
    academic_year = models.CharField(max_length=20)
    receipt_number = models.CharField(max_length=30, unique=True)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    payment_mode = models.CharField(max_length=20, choices=PAYMENT_MODE_CHOICES, default=MODE_CASH)
    payment_for = models.CharField(max_length=100, blank=True)
    paid_months = models.JSONField(default=list, blank=True)
    remarks = models.TextField(blank=True)
    collected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='collected_fee_transactions',
    )
    transaction_date = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'fee_transactions'
        ordering = ['-transaction_date', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_paid__gt=0),
                name='fee_transaction_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['student', 'academic_year'], name='fee_txn_student_year_idx'),
            models.Index(fields=['academic_year', 'transaction_date'], name='fee_txn_year_date_idx'),
        ]

    def clean(self):
        super().clean()

        if self.amount_paid is None or self.amount_paid <= 0:
            raise ValidationError({'amount_paid': 'Payment amount must be greater than zero.'})

        if self.account_id:
            if self.account.student_id != self.student_id:
                raise ValidationError({'account': 'Fee account belongs to a different student.'})
            if self.account.academic_year != self.academic_year:
                raise ValidationError({'account': 'Fee account belongs to a different academic year.'})

        unknown_months = [month for month in (self.paid_months or []) if month not in ACADEMIC_MONTHS]
        if unknown_months:
            raise ValidationError({'paid_months': f"Unknown month labels: {', '.join(unknown_months)}."})

    def save(self, *args, **kwargs):
        if self.pk:
            previous = FeeTransaction.objects.filter(pk=self.pk).values(
                'account_id', 'student_id', 'academic_year', 'amount_paid', 'receipt_number',
            ).first()
            if previous:
                immutable_fields = ['account_id', 'student_id', 'academic_year', 'amount_paid', 'receipt_number']
                if any(previous[field] != getattr(self, field) for field in immutable_fields):
                    raise ValidationError('Fee transactions are immutable. Delete and re-enter instead of editing.')
        super().save(*args, **kwargs)

    def __str__(self):
        return self.receipt_number


class ReceiptSequence(models.Model):
    academic_year = models.CharField(max_length=20, unique=True)
    last_number = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'fee_receipt_sequences'
        ordering = ['-academic_year']

    def __str__(self):
        return f"{self.academic_year}: {self.last_number}"
