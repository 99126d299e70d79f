import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.core.students.models import Student

from .conf import current_academic_year
from .services import auto_create_account_for_student

logger = logging.getLogger(__name__)


def _safe_create_account(student_id):
    student = Student.objects.filter(pk=student_id, is_active=True).first()
    if not student:
        return

    try:
        auto_create_account_for_student(student=student, academic_year=current_academic_year())
    except Exception:
        # Opening the fee account should not block student save operations.
        logger.exception('Could not open fee account for student %s', student_id)


@receiver(post_save, sender=Student)
def create_fee_account_after_student_save(sender, instance: Student, **kwargs):
    if not instance.is_active:
        return

    transaction.on_commit(lambda: _safe_create_account(instance.id))
