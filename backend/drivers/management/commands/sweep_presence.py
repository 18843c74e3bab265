from django.core.management.base import BaseCommand
from drivers.services import get_presence_tracker


class Command(BaseCommand):
    help = "Delete driver presence rows whose last ping is older than the freshness window."

    def handle(self, *args, **options):
        removed = get_presence_tracker().sweep_stale()

        self.stdout.write(
            self.style.SUCCESS(f"Removed {removed} stale presence row(s).")
        )
