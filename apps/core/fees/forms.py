from django import forms
from django.core.exceptions import ValidationError

from .conf import parse_academic_year
from .models import MONTH_CHOICES, FeeStructure, FeeTransaction


def _clean_year(value):
    value = (value or '').strip()
    if value and not parse_academic_year(value):
        raise ValidationError('Academic year must look like 2025-2026.')
    return value


class FeePaymentForm(forms.Form):
    student_id = forms.IntegerField(min_value=1)
    academic_year = forms.CharField(max_length=20, required=False)
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0.01)
    payment_mode = forms.ChoiceField(choices=FeeTransaction.PAYMENT_MODE_CHOICES)
    payment_for = forms.CharField(max_length=100, required=False)
    paid_months = forms.MultipleChoiceField(choices=MONTH_CHOICES, required=False)
    remarks = forms.CharField(required=False)
    transaction_date = forms.DateTimeField(required=False)

    def clean_academic_year(self):
        return _clean_year(self.cleaned_data.get('academic_year'))


class FeePaymentDeleteForm(forms.Form):
    reason = forms.CharField(max_length=255, required=False)


class FeeStructureForm(forms.ModelForm):
    class Meta:
        model = FeeStructure
        fields = ['academic_year', 'class_name', 'total_fee', 'breakdown', 'is_active']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['breakdown'].required = False
        if self.instance and self.instance.pk:
            # Year and class identify the structure.
            self.fields['academic_year'].disabled = True
            self.fields['class_name'].disabled = True

    def clean_academic_year(self):
        return _clean_year(self.cleaned_data.get('academic_year'))

    def clean_breakdown(self):
        breakdown = self.cleaned_data.get('breakdown') or {}
        if not isinstance(breakdown, dict):
            raise ValidationError('Breakdown must be a mapping of fee heads to amounts.')
        return breakdown


class FeeStructureCopyForm(forms.Form):
    from_year = forms.CharField(max_length=20)
    to_year = forms.CharField(max_length=20)

    def clean_from_year(self):
        return _clean_year(self.cleaned_data.get('from_year'))

    def clean_to_year(self):
        return _clean_year(self.cleaned_data.get('to_year'))

    def clean(self):
        cleaned = super().clean()
        if cleaned.get('from_year') and cleaned.get('from_year') == cleaned.get('to_year'):
            raise ValidationError('Source and target academic years must differ.')
        return cleaned
