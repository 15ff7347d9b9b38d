from datetime import timedelta

from django.core.management.base import BaseCommand
from bikemarket.lightspeed.connection import refresh_expiring_tokens


class Command(BaseCommand):
    help = 'Refresh Lightspeed access tokens that are about to expire'

    def add_arguments(self, parser):
        parser.add_argument(
            '--within-minutes',
            type=int,
            default=60,
            help='Refresh tokens expiring within this many minutes (default: 60)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report how many tokens would be refreshed without refreshing them',
        )

    def handle(self, *args, **options):
        within = timedelta(minutes=options['within_minutes'])
        result = refresh_expiring_tokens(within=within, dry_run=options['dry_run'])

        if options['dry_run']:
            self.stdout.write(self.style.WARNING('DRY RUN MODE - No changes will be made'))
            self.stdout.write(f"{result['checked']} connections have tokens expiring within {options['within_minutes']} minutes")
            return

        if not result['checked']:
            self.stdout.write('No connections to refresh')
            return

        self.stdout.write(self.style.SUCCESS(f"Refreshed {result['refreshed']} of {result['checked']} connections"))
        if result['failed']:
            self.stdout.write(self.style.ERROR(f"{result['failed']} failed:"))
            for error in result['errors']:
                self.stdout.write(f'  - {error}')
