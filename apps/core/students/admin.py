from django.contrib import admin

from .models import Student


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('admission_number', 'full_name', 'class_name', 'section', 'is_active')
    list_filter = ('class_name', 'section', 'is_active')
    search_fields = ('admission_number', 'first_name', 'last_name', 'guardian_phone')
