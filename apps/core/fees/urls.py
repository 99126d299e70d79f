from django.urls import path

from .views import (
    account_detail,
    class_summary,
    fee_receipt_pdf,
    fee_statistics,
    fee_structure_copy,
    fee_structure_delete,
    fee_structure_list,
    fee_structure_sync,
    fee_structure_update,
    payment_collect,
    payment_delete,
    pending_fees,
    recent_collections,
    student_history,
    transaction_list,
)

urlpatterns = [
    path('payments/', payment_collect, name='fee_payment_collect'),
    path('payments/<int:transaction_id>/delete/', payment_delete, name='fee_payment_delete'),
    path('transactions/', transaction_list, name='fee_transaction_list'),
    path('collections/recent/', recent_collections, name='fee_recent_collections'),
    path('receipts/<str:receipt_number>/pdf/', fee_receipt_pdf, name='fee_receipt_pdf'),

    path('accounts/<int:student_id>/', account_detail, name='fee_account_detail'),
    path('students/<int:student_id>/history/', student_history, name='fee_student_history'),

    path('structures/', fee_structure_list, name='fee_structure_list'),
    path('structures/copy/', fee_structure_copy, name='fee_structure_copy'),
    path('structures/<int:pk>/edit/', fee_structure_update, name='fee_structure_update'),
    path('structures/<int:pk>/sync/', fee_structure_sync, name='fee_structure_sync'),
    path('structures/<int:pk>/delete/', fee_structure_delete, name='fee_structure_delete'),

    path('statistics/', fee_statistics, name='fee_statistics'),
    path('pending/', pending_fees, name='fee_pending'),
    path('class-summary/', class_summary, name='fee_class_summary'),
]
