from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.management.base import BaseCommand
from django.utils import timezone

from clinic.services import departments, drugs, master_data, service_catalogue, test_catalog, wards


class Command(BaseCommand):
    help = "Invalidate and warm master data caches; broadcast WebSocket refresh event."

    def handle(self, *args, **options):
        now = timezone.now()
        bumped = master_data.invalidate_all()

        warmers = [
            ('department', departments.list_departments),
            ('ward', wards.list_wards),
            ('bed', wards.occupancy_matrix),
            ('test_catalog', test_catalog.list_tests),
            ('test_catalog', test_catalog.categories),
            ('drug', drugs.list_drugs),
            ('service', service_catalogue.list_services),
        ]
        keys_refreshed = []
        for entity, warm in warmers:
            warm()
            keys_refreshed.append(f'{master_data.PREFIX}:{entity}:{warm.__name__}')

        channel_layer = get_channel_layer()
        if channel_layer is not None:
            event = {"type": "broadcast.refresh", "version": int(now.timestamp()), "ts": now.isoformat(),
                     "keys": keys_refreshed, "entities": bumped}
            async_to_sync(channel_layer.group_send)("updates", event)

        self.stdout.write(self.style.SUCCESS(f"Refreshed {len(keys_refreshed)} caches at {now}"))
