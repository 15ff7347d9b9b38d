from django.core.management.base import BaseCommand
from django.utils import timezone
from bikemarket.core.cache_utils import invalidate_listing_caches
from bikemarket.listings.models import Listing


class Command(BaseCommand):
    help = 'Mark active listings whose expires_at has passed as expired'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report listings that would expire without changing them',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        now = timezone.now()

        due = Listing.objects.filter(
            listing_status='active',
            sold_at__isnull=True,
            expires_at__isnull=False,
            expires_at__lte=now,
        )
        count = due.count()
        self.stdout.write(f'Found {count} listings past their expiry date')

        if dry_run:
            self.stdout.write(self.style.WARNING('DRY RUN MODE - No changes will be made'))
            for listing in due[:50]:
                self.stdout.write(f'  - {listing.id} "{listing.description}" expired {listing.expires_at:%Y-%m-%d}')
            return

        if count:
            updated = due.update(listing_status='expired', is_active=False, updated_at=now)
            invalidate_listing_caches()
            self.stdout.write(self.style.SUCCESS(f'Expired {updated} listings'))
        else:
            self.stdout.write(self.style.SUCCESS('Nothing to expire'))
