import decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('students', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='FeeStructure',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('academic_year', models.CharField(max_length=20)),
                ('class_name', models.CharField(max_length=50)),
                ('total_fee', models.DecimalField(decimal_places=2, max_digits=12)),
                ('breakdown', models.JSONField(blank=True, default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'fee_structures',
                'ordering': ['-academic_year', 'class_name'],
                'constraints': [
                    models.UniqueConstraint(
                        fields=('academic_year', 'class_name'),
                        name='unique_fee_structure_per_class_year',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(total_fee__gte=0),
                        name='fee_structure_total_fee_non_negative',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='FeeAccount',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('academic_year', models.CharField(max_length=20)),
                ('total_fee', models.DecimalField(decimal_places=2, max_digits=12)),
                ('total_paid', models.DecimalField(decimal_places=2, default=decimal.Decimal('0.00'), max_digits=12)),
                ('balance', models.DecimalField(decimal_places=2, max_digits=12)),
                ('status', models.CharField(
                    choices=[('pending', 'Pending'), ('partial', 'Partial'), ('paid', 'Paid'), ('overdue', 'Overdue')],
                    default='pending',
                    max_length=10,
                )),
                ('paid_months', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='fee_accounts',
                    to='students.student',
                )),
            ],
            options={
                'db_table': 'fee_accounts',
                'ordering': ['-balance', 'id'],
                'indexes': [models.Index(fields=['academic_year', 'status'], name='fee_account_year_status_idx')],
                'constraints': [
                    models.UniqueConstraint(
                        fields=('student', 'academic_year'),
                        name='unique_fee_account_per_student_year',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(total_paid__gte=0),
                        name='fee_account_total_paid_non_negative',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(total_fee__gte=0),
                        name='fee_account_total_fee_non_negative',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='FeeTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('academic_year', models.CharField(max_length=20)),
                ('receipt_number', models.CharField(max_length=30, unique=True)),
                ('amount_paid', models.DecimalField(decimal_places=2, max_digits=12)),
                ('payment_mode', models.CharField(
                    choices=[
                        ('cash', 'Cash'),
                        ('upi', 'UPI'),
                        ('bank_transfer', 'Bank Transfer'),
                        ('cheque', 'Cheque'),
                        ('online', 'Online'),
                    ],
                    default='cash',
                    max_length=20,
                )),
                ('payment_for', models.CharField(blank=True, max_length=100)),
                ('paid_months', models.JSONField(blank=True, default=list)),
                ('remarks', models.TextField(blank=True)),
                ('transaction_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('account', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='transactions',
                    to='fees.feeaccount',
                )),
                ('collected_by', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name='collected_fee_transactions',
                    to=settings.AUTH_USER_MODEL,
                )),
                ('student', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='fee_transactions',
                    to='students.student',
                )),
            ],
            options={
                'db_table': 'fee_transactions',
                'ordering': ['-transaction_date', '-id'],
                'indexes': [
                    models.Index(fields=['student', 'academic_year'], name='fee_txn_student_year_idx'),
                    models.Index(fields=['academic_year', 'transaction_date'], name='fee_txn_year_date_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(amount_paid__gt=0),
                        name='fee_transaction_amount_positive',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReceiptSequence',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('academic_year', models.CharField(max_length=20, unique=True)),
                ('last_number', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'fee_receipt_sequences',
                'ordering': ['-academic_year'],
            },
        ),
    ]
