import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

BLOOD_GROUP_CHOICES = [('A+', 'A+'), ('A-', 'A-'), ('B+', 'B+'), ('B-', 'B-'), ('AB+', 'AB+'), ('AB-', 'AB-'), ('O+', 'O+'), ('O-', 'O-')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('bloodrequests', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('is_global', models.BooleanField(default=False)),
                ('type', models.CharField(choices=[('blood_request', 'Blood Request'), ('donor_accepted', 'Donor Accepted'), ('donation_reminder', 'Donation Reminder')], db_index=True, max_length=20)),
                ('title', models.CharField(max_length=200)),
                ('message', models.TextField()),
                ('recipient_blood_group', models.CharField(blank=True, choices=BLOOD_GROUP_CHOICES, max_length=3)),
                ('donor_blood_group', models.CharField(blank=True, choices=BLOOD_GROUP_CHOICES, max_length=3)),
                ('urgency_level', models.CharField(blank=True, max_length=10)),
                ('hospital_name', models.CharField(blank=True, max_length=200)),
                ('units_required', models.PositiveIntegerField(blank=True, null=True)),
                ('patient_name', models.CharField(blank=True, max_length=200)),
                ('match_score', models.PositiveIntegerField(blank=True, null=True)),
                ('priority_order', models.PositiveIntegerField(blank=True, null=True)),
                ('contact_details', models.JSONField(blank=True, default=dict)),
                ('request_details', models.JSONField(blank=True, default=dict)),
                ('read', models.BooleanField(default=False)),
                ('read_at', models.DateTimeField(blank=True, null=True)),
                ('responded', models.BooleanField(default=False)),
                ('responded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('blood_request', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='notifications', to='bloodrequests.bloodrequest')),
                ('donor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='notifications', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at', '-pk'],
                'indexes': [
                    models.Index(fields=['blood_request', 'user', 'type'], name='notif_req_user_type_idx'),
                    models.Index(fields=['user', '-created_at'], name='notif_user_created_idx'),
                ],
            },
        ),
    ]
