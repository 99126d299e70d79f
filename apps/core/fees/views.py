import json

from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError
from django.forms.models import model_to_dict
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import role_required
from apps.core.users.models import User

from .conf import current_academic_year, is_due_date_passed, school_name
from .exceptions import InvalidStateError, LedgerError, NotFoundError, StorageError
from .forms import FeePaymentDeleteForm, FeePaymentForm, FeeStructureCopyForm, FeeStructureForm
from .models import FeeStructure, FeeTransaction
from .receipts import generate_fee_receipt_pdf
from .services import (
    copy_fee_structures,
    create_fee_structure,
    delete_fee_structure,
    delete_payment,
    get_account,
    record_payment,
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

ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (StorageError, 503),
)


def _request_data(request):
    """Form-encoded POST data, or the decoded body for JSON requests."""
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return request.POST


def _error_response(exc):
    if isinstance(exc, ValidationError):
        return JsonResponse({'success': False, 'error': '; '.join(exc.messages)}, status=400)

    status = 500
    for error_class, error_status in ERROR_STATUS:
        if isinstance(exc, error_class):
            status = error_status
            break
    return JsonResponse({'success': False, 'error': str(exc), 'step': exc.step}, status=status)


def _form_error_response(form):
    errors = {
        field: [error['message'] for error in field_errors]
        for field, field_errors in form.errors.get_json_data().items()
    }
    messages = [message for field_errors in errors.values() for message in field_errors]
    return JsonResponse({'success': False, 'error': '; '.join(messages), 'errors': errors}, status=400)


def _invalid_body_response():
    return JsonResponse({'success': False, 'error': 'Request body must be a JSON object.'}, status=400)


def _selected_year(request):
    return (request.GET.get('year') or '').strip() or current_academic_year()


def _serialize_account(account):
    if account is None:
        return None
    return {
        'id': account.id,
        'studentId': account.student_id,
        'admissionNumber': account.student.admission_number,
        'studentName': account.student.full_name,
        'className': account.student.class_name,
        'academicYear': account.academic_year,
        'totalFee': account.total_fee,
        'totalPaid': account.total_paid,
        'balance': account.balance,
        'status': account.status,
        'paidMonths': account.paid_months,
        'updatedAt': account.updated_at,
    }


def _serialize_structure(structure):
    return {
        'id': structure.id,
        'academicYear': structure.academic_year,
        'className': structure.class_name,
        'totalFee': structure.total_fee,
        'breakdown': structure.breakdown,
        'isActive': structure.is_active,
    }


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_POST
def payment_collect(request):
    data = _request_data(request)
    if data is None:
        return _invalid_body_response()

    form = FeePaymentForm(data)
    if not form.is_valid():
        return _form_error_response(form)

    cleaned = form.cleaned_data
    academic_year = cleaned['academic_year'] or current_academic_year()
    try:
        result = record_payment(
            student_id=cleaned['student_id'],
            academic_year=academic_year,
            amount=cleaned['amount'],
            payment_mode=cleaned['payment_mode'],
            payment_for=cleaned['payment_for'],
            paid_months=cleaned['paid_months'],
            remarks=cleaned['remarks'],
            collected_by=request.user,
            transaction_date=cleaned['transaction_date'],
            due_date_passed=is_due_date_passed(academic_year),
        )
    except (ValidationError, LedgerError) as exc:
        return _error_response(exc)

    log_audit_event(
        request=request,
        action='fees.payment_recorded',
        target=result.transaction,
        description=f"Receipt={result.receipt_number}, Student={cleaned['student_id']}, Amount={cleaned['amount']}",
        new_value={
            'receipt_number': result.receipt_number,
            'amount_paid': result.transaction.amount_paid,
            'balance': result.new_balance,
            'status': result.new_status,
        },
    )
    return JsonResponse({
        'success': True,
        'receiptNumber': result.receipt_number,
        'newBalance': result.new_balance,
        'newStatus': result.new_status,
        'transactionId': result.transaction.id,
    }, status=201)


@login_required
@role_required(User.FEE_MANAGEMENT_ROLES)
@require_POST
def payment_delete(request, transaction_id):
    data = _request_data(request)
    if data is None:
        return _invalid_body_response()

    form = FeePaymentDeleteForm(data)
    if not form.is_valid():
        return _form_error_response(form)

    fee_transaction = FeeTransaction.objects.filter(pk=transaction_id).first()
    due_date_passed = bool(fee_transaction) and is_due_date_passed(fee_transaction.academic_year)

    try:
        result = delete_payment(transaction_id=transaction_id, due_date_passed=due_date_passed)
    except (ValidationError, LedgerError) as exc:
        return _error_response(exc)

    log_audit_event(
        request=request,
        action='fees.payment_deleted',
        entity_type='FeeTransaction',
        entity_id=transaction_id,
        description=f"Receipt={result.receipt_number}, Reason={form.cleaned_data['reason'] or '-'}",
        old_value=fee_transaction,
        new_value={'balance': result.new_balance, 'status': result.new_status},
    )
    return JsonResponse({
        'success': True,
        'receiptNumber': result.receipt_number,
        'amountReversed': result.amount_reversed,
        'newBalance': result.new_balance,
        'newStatus': result.new_status,
    })


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def account_detail(request, student_id):
    account = get_account(student_id=student_id, academic_year=_selected_year(request))
    return JsonResponse({'account': _serialize_account(account)})


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def student_history(request, student_id):
    return JsonResponse({'studentId': student_id, 'history': student_fee_history(student_id=student_id)})


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def fee_receipt_pdf(request, receipt_number):
    fee_transaction = get_object_or_404(
        FeeTransaction.objects.select_related('student', 'account', 'collected_by'),
        receipt_number=receipt_number,
    )
    pdf_bytes = generate_fee_receipt_pdf(fee_transaction, school_name=school_name())
    response = HttpResponse(pdf_bytes, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{fee_transaction.receipt_number}.pdf"'
    return response


@login_required
@role_required(User.FEE_MANAGEMENT_ROLES)
@require_http_methods(['GET', 'POST'])
def fee_structure_list(request):
    if request.method == 'POST':
        data = _request_data(request)
        if data is None:
            return _invalid_body_response()

        form = FeeStructureForm(data)
        if not form.is_valid():
            return _form_error_response(form)

        try:
            result = create_fee_structure(
                academic_year=form.cleaned_data['academic_year'],
                class_name=form.cleaned_data['class_name'],
                total_fee=form.cleaned_data['total_fee'],
                breakdown=form.cleaned_data['breakdown'],
            )
        except (ValidationError, LedgerError) as exc:
            return _error_response(exc)

        structure = result['structure']
        log_audit_event(
            request=request,
            action='fees.fee_structure_created',
            target=structure,
            description=f"Class={structure.class_name}, Year={structure.academic_year}, Total={structure.total_fee}",
            new_value=structure,
        )
        return JsonResponse({
            'success': True,
            'structure': _serialize_structure(structure),
            'accountsCreated': result['accounts_created'],
        }, status=201)

    structures = FeeStructure.objects.filter(academic_year=_selected_year(request)).order_by('class_name')
    return JsonResponse({'structures': [_serialize_structure(row) for row in structures]})


@login_required
@role_required(User.FEE_MANAGEMENT_ROLES)
@require_POST
def fee_structure_update(request, pk):
    structure = get_object_or_404(FeeStructure, pk=pk)
    previous = model_to_dict(structure)

    data = _request_data(request)
    if data is None:
        return _invalid_body_response()

    form = FeeStructureForm(data, instance=structure)
    if not form.is_valid():
        return _form_error_response(form)

    try:
        structure = update_fee_structure(
            structure=structure,
            total_fee=form.cleaned_data['total_fee'],
            breakdown=form.cleaned_data['breakdown'],
            is_active=form.cleaned_data['is_active'],
        )
    except (ValidationError, LedgerError) as exc:
        return _error_response(exc)

    log_audit_event(
        request=request,
        action='fees.fee_structure_updated',
        target=structure,
        description=f"Class={structure.class_name}, Year={structure.academic_year}",
        old_value=previous,
        new_value=structure,
    )
    return JsonResponse({'success': True, 'structure': _serialize_structure(structure)})


@login_required
@role_required(User.FEE_MANAGEMENT_ROLES)
@require_POST
def fee_structure_sync(request, pk):
    structure = get_object_or_404(FeeStructure, pk=pk)
    try:
        result = sync_fee_accounts_for_structure(structure)
    except (ValidationError, LedgerError) as exc:
        return _error_response(exc)

    log_audit_event(
        request=request,
        action='fees.fee_accounts_synced',
        target=structure,
        description=f"Created={result['created']}, Skipped={result['skipped']}",
    )
    return JsonResponse({'success': True, **result})


@login_required
@role_required(User.FEE_MANAGEMENT_ROLES)
@require_POST
def fee_structure_copy(request):
    data = _request_data(request)
    if data is None:
        return _invalid_body_response()

    form = FeeStructureCopyForm(data)
    if not form.is_valid():
        return _form_error_response(form)

    from_year = form.cleaned_data['from_year']
    to_year = form.cleaned_data['to_year']
    try:
        copied = copy_fee_structures(from_year=from_year, to_year=to_year)
    except (ValidationError, LedgerError) as exc:
        return _error_response(exc)

    log_audit_event(
        request=request,
        action='fees.fee_structures_copied',
        entity_type='FeeStructure',
        description=f"From={from_year}, To={to_year}, Copied={copied}",
    )
    return JsonResponse({'success': True, 'copied': copied})


@login_required
@role_required(User.FEE_MANAGEMENT_ROLES)
@require_POST
def fee_structure_delete(request, pk):
    structure = get_object_or_404(FeeStructure, pk=pk)
    previous = model_to_dict(structure)
    try:
        delete_fee_structure(structure=structure)
    except (ValidationError, LedgerError) as exc:
        return _error_response(exc)

    log_audit_event(
        request=request,
        action='fees.fee_structure_deleted',
        entity_type='FeeStructure',
        entity_id=pk,
        description=f"Class={previous['class_name']}, Year={previous['academic_year']}",
        old_value=previous,
    )
    return JsonResponse({'success': True})


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def fee_statistics(request):
    return JsonResponse(fee_account_statistics(academic_year=_selected_year(request)))


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def pending_fees(request):
    limit = request.GET.get('limit')
    rows = students_with_pending_fees(
        academic_year=_selected_year(request),
        class_name=(request.GET.get('class_name') or '').strip() or None,
        limit=int(limit) if limit and limit.isdigit() else None,
    )
    return JsonResponse({'students': rows, 'count': len(rows)})


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def class_summary(request):
    return JsonResponse({'classes': class_wise_pending_summary(academic_year=_selected_year(request))})


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def transaction_list(request):
    limit = request.GET.get('limit')
    rows = fee_transactions(
        academic_year=_selected_year(request),
        class_name=(request.GET.get('class_name') or '').strip() or None,
        payment_mode=(request.GET.get('payment_mode') or '').strip() or None,
        limit=int(limit) if limit and limit.isdigit() else None,
    )
    return JsonResponse({'transactions': rows, 'count': len(rows)})


@login_required
@role_required(User.FEE_COLLECTION_ROLES)
@require_GET
def recent_collections(request):
    limit = request.GET.get('limit')
    rows = recent_fee_collections(
        academic_year=(request.GET.get('year') or '').strip() or None,
        limit=int(limit) if limit and limit.isdigit() and int(limit) > 0 else 5,
    )
    return JsonResponse({'transactions': rows, 'count': len(rows)})
