from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from clinic.services import prescriptions


class Command(BaseCommand):
    help = "Release drug stock held by prescriptions whose reservation has expired."

    def add_arguments(self, parser):
        parser.add_argument('--dry-run', action='store_true', help='List expired reservations without releasing them')

    def handle(self, *args, **options):
        now = timezone.now()
        if options['dry_run']:
            for rx in prescriptions.expired_reservations(now).select_related('drug'):
                self.stdout.write(f"#{rx.id} {rx.drug} x{rx.quantity} reserved {rx.stock_reserved_at:%Y-%m-%d %H:%M}")
            return
        result = prescriptions.release_expired(now)
        msg = (f"Released {result['released']} reservation(s) older than "
               f"{settings.STOCK_RESERVATION_TTL_MINUTES} min, {result['failed']} failed")
        if result['failed']:
            self.stdout.write(self.style.WARNING(msg))
        else:
            self.stdout.write(self.style.SUCCESS(msg))
