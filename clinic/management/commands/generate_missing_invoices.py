from django.core.management.base import BaseCommand

from clinic.services import invoices


class Command(BaseCommand):
    help = "Issue invoices for billing accounts that have charges but no invoice yet."

    def handle(self, *args, **options):
        result = invoices.generate_missing()
        style = self.style.WARNING if result['errors'] else self.style.SUCCESS
        self.stdout.write(style(f"Generated {result['generated']} invoice(s), {result['errors']} error(s)"))
