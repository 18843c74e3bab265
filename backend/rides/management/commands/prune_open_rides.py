from django.core.management.base import BaseCommand
from services.ride_management import get_ride_lifecycle


class Command(BaseCommand):
    help = "Remove open-ride index entries older than the ride freshness window."

    def handle(self, *args, **options):
        pruned = get_ride_lifecycle().prune_open_ride_index()

        self.stdout.write(
            self.style.SUCCESS(f"Pruned {pruned} open-ride index entries.")
        )
