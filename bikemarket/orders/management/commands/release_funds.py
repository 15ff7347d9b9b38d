from django.core.management.base import BaseCommand
from django.utils import timezone
from bikemarket.orders.escrow import release_due_funds
from bikemarket.orders.models import Purchase


class Command(BaseCommand):
    help = 'Auto-release escrowed funds whose hold period has lapsed and pay out sellers'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List purchases that are due without releasing them',
        )

    def handle(self, *args, **options):
        if options['dry_run']:
            due = Purchase.objects.filter(funds_status='held', funds_release_at__lte=timezone.now())
            self.stdout.write(self.style.WARNING('DRY RUN MODE - No changes will be made'))
            self.stdout.write(f'{due.count()} purchases ready for auto-release')
            for purchase in due:
                self.stdout.write(f'  - {purchase.order_number} ({purchase.total_amount}) due {purchase.funds_release_at:%Y-%m-%d %H:%M}')
            return

        result = release_due_funds()
        if not result['due']:
            self.stdout.write('No purchases ready for auto-release')
            return

        self.stdout.write(self.style.SUCCESS(f"Released {result['released']} purchases"))
        if result['failed']:
            self.stdout.write(self.style.ERROR(f"{result['failed']} failed:"))
            for error in result['errors']:
                self.stdout.write(f'  - {error}')
