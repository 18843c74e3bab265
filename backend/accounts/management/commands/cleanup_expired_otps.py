from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from accounts.models import OTPRecord
from accounts.otp import get_otp_authenticator


class Command(BaseCommand):
    help = "Delete OTP audit records that expired more than N days ago."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=7,
            help="Delete records that expired more than this many days ago (default: 7).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        cutoff = timezone.now() - timedelta(days=days)

        if options["dry_run"]:
            count = OTPRecord.objects.filter(expires_at__lt=cutoff).count()
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {count} OTP records that expired over {days} days ago."
                )
            )
            return

        deleted = get_otp_authenticator().cleanup(cutoff)
        self.stdout.write(
            self.style.SUCCESS(f"Deleted {deleted} OTP records that expired over {days} days ago.")
        )
