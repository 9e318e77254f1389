import uuid
from django.db import migrations, models
import django.db.models.deletion

import apps.scheduling.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('authz', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Availability',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('day', models.DateField()),
                ('slots', models.JSONField(default=list)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('doctor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='availability', to='authz.doctor')),
            ],
            options={
                'verbose_name': 'Availability',
                'verbose_name_plural': 'Availability',
                'db_table': 'availability',
                'ordering': ['day'],
            },
        ),
        migrations.CreateModel(
            name='Appointment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('patient_email', models.EmailField(max_length=255)),
                ('patient_name', models.CharField(blank=True, max_length=255)),
                ('patient_phone', models.CharField(blank=True, max_length=50)),
                ('locale', models.CharField(default='de', max_length=2)),
                ('day', models.DateField()),
                ('slot', models.CharField(max_length=5)),
                ('plan', models.CharField(choices=[('consultation', 'Consultation'), ('prescription', 'Prescription')], default='consultation', max_length=20)),
                ('reason', models.TextField(blank=True, max_length=500)),
                ('notes', models.TextField(blank=True, max_length=1000)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('upcoming', 'Upcoming'), ('confirmed', 'Confirmed'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='upcoming', max_length=20)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_by', models.CharField(blank=True, choices=[('patient', 'Patient'), ('doctor', 'Doctor'), ('admin', 'Admin'), ('system', 'System')], max_length=20)),
                ('cancel_reason', models.TextField(blank=True)),
                ('completion_notes', models.TextField(blank=True)),
                ('management_token', models.CharField(default=apps.scheduling.models.generate_management_token, editable=False, max_length=64, unique=True)),
                ('is_video_appointment', models.BooleanField(default=False)),
                ('video_override', models.BooleanField(default=False, help_text='Force a video consultation regardless of doctor or weekday')),
                ('meeting_room_name', models.CharField(blank=True, max_length=255)),
                ('meeting_url', models.URLField(blank=True, max_length=500)),
                ('reminder_24h_sent_at', models.DateTimeField(blank=True, null=True)),
                ('reminder_2h_sent_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('doctor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='appointments', to='authz.doctor')),
                ('patient', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='appointments', to='authz.user')),
            ],
            options={
                'verbose_name': 'Appointment',
                'verbose_name_plural': 'Appointments',
                'db_table': 'appointment',
                'ordering': ['-day', '-slot'],
            },
        ),
        migrations.CreateModel(
            name='RescheduleEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('from_day', models.DateField()),
                ('from_slot', models.CharField(max_length=5)),
                ('to_day', models.DateField()),
                ('to_slot', models.CharField(max_length=5)),
                ('actor', models.CharField(choices=[('patient', 'Patient'), ('doctor', 'Doctor'), ('admin', 'Admin'), ('system', 'System')], max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('appointment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reschedule_history', to='scheduling.appointment')),
                ('from_doctor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='authz.doctor')),
                ('to_doctor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='authz.doctor')),
            ],
            options={
                'verbose_name': 'Reschedule Entry',
                'verbose_name_plural': 'Reschedule History',
                'db_table': 'appointment_reschedule',
                'ordering': ['created_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='availability',
            constraint=models.UniqueConstraint(fields=('doctor', 'day'), name='uniq_availability_doctor_day', violation_error_message='Availability for this doctor and date already exists'),
        ),
        migrations.AddIndex(
            model_name='availability',
            index=models.Index(fields=['day'], name='idx_availability_day'),
        ),
        migrations.AddIndex(
            model_name='availability',
            index=models.Index(fields=['is_active'], name='idx_availability_active'),
        ),
        migrations.AddConstraint(
            model_name='appointment',
            constraint=models.UniqueConstraint(condition=models.Q(('status', 'cancelled'), _negated=True), fields=('doctor', 'day', 'slot'), name='uniq_active_appointment_slot', violation_error_message='This slot is already booked'),
        ),
        migrations.AddIndex(
            model_name='appointment',
            index=models.Index(fields=['patient'], name='idx_appointment_patient'),
        ),
        migrations.AddIndex(
            model_name='appointment',
            index=models.Index(fields=['doctor', 'day'], name='idx_appointment_doctor_day'),
        ),
        migrations.AddIndex(
            model_name='appointment',
            index=models.Index(fields=['status'], name='idx_appointment_status'),
        ),
        migrations.AddIndex(
            model_name='appointment',
            index=models.Index(fields=['day'], name='idx_appointment_day'),
        ),
    ]
