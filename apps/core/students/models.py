from django.core.exceptions import ValidationError
from django.db import models


class Student(models.Model):
    admission_number = models.CharField(max_length=40, unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    class_name = models.CharField(max_length=50)
    section = models.CharField(max_length=5, blank=True)
    guardian_name = models.CharField(max_length=150, blank=True)
    guardian_phone = models.CharField(max_length=20, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['class_name', 'section', 'first_name', 'id']
        indexes = [
            models.Index(fields=['class_name', 'is_active'], name='students_class_active_idx'),
        ]

    def clean(self):
        super().clean()
        if self.admission_number:
            self.admission_number = self.admission_number.strip()
        if not self.admission_number:
            raise ValidationError({'admission_number': 'Admission number is required.'})
        if self.class_name:
            self.class_name = self.class_name.strip()
        if not self.class_name:
            raise ValidationError({'class_name': 'Class is required.'})

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self):
        return f"{self.full_name} ({self.admission_number})"
