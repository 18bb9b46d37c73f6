# donors/management/commands/import_donors.py
"""
Import donor accounts from a spreadsheet
Usage: python manage.py import_donors path/to/donors.xlsx [--dry-run]
"""

from pathlib import Path

import pandas as pd
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError, transaction

from algorithms.blood_compatibility import is_valid_blood_group
from donors.models import DonorProfile

User = get_user_model()

# Accepted spellings for each column
COLUMN_ALIASES = {
    'full_name': ['full_name', 'name'],
    'email': ['email'],
    'phone': ['phone', 'phone_number'],
    'blood_group': ['blood_group', 'blood_type'],
    'address': ['address'],
    'city': ['city'],
    'can_donate': ['can_donate', 'is_available'],
    'last_donation_date': ['last_donation_date'],
    'donation_count': ['donation_count'],
}


def read_table(path):
    if path.suffix.lower() == '.csv':
        return pd.read_csv(path)
    return pd.read_excel(path)


def normalize_columns(df):
    df = df.rename(columns=lambda c: str(c).strip().lower().replace(' ', '_'))
    renames = {}
    for target, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in df.columns and target not in df.columns:
                renames[alias] = target
                break
    return df.rename(columns=renames)


def cell(row, column, default=''):
    value = row.get(column)
    if value is None or pd.isna(value):
        return default
    return value


def parse_bool(value, default=True):
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'yes', 'true', 'y')
    return bool(value)


def parse_count(value):
    """Non-negative whole number; raises ValueError for anything else."""
    number = pd.to_numeric(value, errors='coerce')
    if pd.isna(number) or number < 0 or number != int(number):
        raise ValueError(f"Invalid donation count {value!r}")
    return int(number)


class Command(BaseCommand):
    help = 'Import donors from an Excel or CSV file'

    def add_arguments(self, parser):
        parser.add_argument('path', type=str, help='Path to the .xlsx or .csv file')
        parser.add_argument('--dry-run', action='store_true', help='Validate rows without saving')

    def handle(self, *args, **options):
        path = Path(options['path'])
        if not path.exists():
            raise CommandError(f'File not found: {path}')

        self.stdout.write(self.style.WARNING(f'Starting import from {path}...'))
        df = normalize_columns(read_table(path))
        self.stdout.write(f'Found {len(df)} rows')

        missing = {'full_name', 'email', 'blood_group'} - set(df.columns)
        if missing:
            raise CommandError(f"Missing column(s): {', '.join(sorted(missing))}")

        df = df.dropna(subset=['email'])
        df['blood_group'] = df['blood_group'].astype(str).str.strip().str.upper()

        created_count = 0
        updated_count = 0
        skipped_count = 0

        for index, row in df.iterrows():
            line = index + 2
            email = str(row['email']).strip().lower()
            blood_group = row['blood_group']

            if not is_valid_blood_group(blood_group):
                self.stdout.write(self.style.WARNING(f'Skipping row {line}: Invalid blood group {blood_group}'))
                skipped_count += 1
                continue

            last_donation = pd.to_datetime(cell(row, 'last_donation_date', None), errors='coerce')
            try:
                donation_count = parse_count(cell(row, 'donation_count', 0))
            except ValueError as e:
                self.stdout.write(self.style.WARNING(f'Skipping row {line}: {e}'))
                skipped_count += 1
                continue

            defaults = {
                'full_name': str(cell(row, 'full_name')).strip(),
                'phone': str(cell(row, 'phone')).strip(),
                'blood_group': blood_group,
                'address': str(cell(row, 'address')).strip(),
                'city': str(cell(row, 'city')).strip(),
                'can_donate': parse_bool(cell(row, 'can_donate', None)),
                'donation_count': donation_count,
                'last_donation_date': None if pd.isna(last_donation) else last_donation.date(),
            }

            if options['dry_run']:
                self.stdout.write(f'OK row {line}: {defaults["full_name"]} ({blood_group}) - {email}')
                continue

            try:
                with transaction.atomic():
                    user, user_created = User.objects.get_or_create(
                        email=email,
                        defaults={'username': email, 'user_type': 'donor', 'is_active': True},
                    )
                    if user_created:
                        # Imported donors sign in through a password reset
                        user.set_unusable_password()
                        user.save(update_fields=['password'])

                    donor, created = DonorProfile.objects.update_or_create(user=user, defaults=defaults)
            except (IntegrityError, ValueError) as e:
                skipped_count += 1
                self.stdout.write(self.style.ERROR(f'Error at row {line}: {e}'))
                continue

            if created:
                created_count += 1
                self.stdout.write(f'Created: {donor.full_name} ({donor.blood_group}) - {email}')
            else:
                updated_count += 1
                self.stdout.write(f'Updated: {donor.full_name} ({donor.blood_group})')

        self.stdout.write(
            self.style.SUCCESS(
                f'\nImport complete!\n'
                f'Created: {created_count}\n'
                f'Updated: {updated_count}\n'
                f'Skipped: {skipped_count}'
            )
        )
