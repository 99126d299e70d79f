from django.contrib import admin

from .models import FeeAccount, FeeStructure, FeeTransaction, ReceiptSequence


@admin.register(FeeStructure)
class FeeStructureAdmin(admin.ModelAdmin):
    list_display = ('class_name', 'academic_year', 'total_fee', 'is_active')
    list_filter = ('academic_year', 'is_active')
    search_fields = ('class_name',)


@admin.register(FeeAccount)
class FeeAccountAdmin(admin.ModelAdmin):
    list_display = ('student', 'academic_year', 'total_fee', 'total_paid', 'balance', 'status')
    list_filter = ('academic_year', 'status')
    search_fields = ('student__admission_number', 'student__first_name', 'student__last_name')
    readonly_fields = (
        'student',
        'academic_year',
        'total_fee',
        'total_paid',
        'balance',
        'status',
        'paid_months',
        'created_at',
        'updated_at',
    )

    # Accounts are opened and moved only by the ledger services.
    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(FeeTransaction)
class FeeTransactionAdmin(admin.ModelAdmin):
    list_display = (
        'receipt_number',
        'student',
        'academic_year',
        'amount_paid',
        'payment_mode',
        'transaction_date',
        'collected_by',
    )
    list_filter = ('academic_year', 'payment_mode')
    search_fields = ('receipt_number', 'student__admission_number')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        # Deleting through the admin would skip the account reversal.
        return False


@admin.register(ReceiptSequence)
class ReceiptSequenceAdmin(admin.ModelAdmin):
    list_display = ('academic_year', 'last_number', 'updated_at')
    readonly_fields = ('academic_year', 'last_number', 'updated_at')
