from django.contrib.auth.models import AbstractUser, UserManager as DjangoUserManager
from django.db import models


class UserManager(DjangoUserManager):
    def create_superuser(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault('role', 'super_admin')
        return super().create_superuser(username, email=email, password=password, **extra_fields)


class User(AbstractUser):
    ROLE_SUPER_ADMIN = 'super_admin'
    ROLE_ADMIN = 'admin'
    ROLE_OFFICE_STAFF = 'office_staff'
    ROLE_TEACHER = 'teacher'
    ROLE_STUDENT = 'student'

    ROLE_CHOICES = (
        (ROLE_SUPER_ADMIN, 'Super Admin'),
        (ROLE_ADMIN, 'Admin'),
        (ROLE_OFFICE_STAFF, 'Office Staff'),
        (ROLE_TEACHER, 'Teacher'),
        (ROLE_STUDENT, 'Student'),
    )

    # Roles allowed to run the fee ledger.
    FEE_COLLECTION_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_OFFICE_STAFF)
    FEE_MANAGEMENT_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN)

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_TEACHER)
    phone = models.CharField(max_length=20, blank=True)

    objects = UserManager()

    class Meta:
        indexes = [
            models.Index(fields=['role'], name='users_user_role_idx'),
        ]

    def save(self, *args, **kwargs):
        if self.is_superuser and self.role != self.ROLE_SUPER_ADMIN:
            self.role = self.ROLE_SUPER_ADMIN
        super().save(*args, **kwargs)

    @property
    def can_collect_fees(self):
        return self.role in self.FEE_COLLECTION_ROLES

    @property
    def can_manage_fees(self):
        return self.role in self.FEE_MANAGEMENT_ROLES

    def __str__(self):
        return f"{self.username} ({self.role})"


class AuditLog(models.Model):
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
    )

    action = models.CharField(max_length=100)
    entity_type = models.CharField(max_length=100, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    description = models.TextField(blank=True)
    old_value = models.TextField(blank=True)
    new_value = models.TextField(blank=True)

    method = models.CharField(max_length=10, blank=True)
    path = models.CharField(max_length=255, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', '-created_at'], name='users_audit_user_created_idx'),
            models.Index(fields=['action'], name='users_audit_action_idx'),
            models.Index(fields=['entity_type', 'entity_id'], name='users_audit_entity_idx'),
        ]

    def __str__(self):
        return f"{self.action} by {self.user_id or 'system'}"
