from django.core.management.base import BaseCommand
from django.utils import timezone
from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync

from clinic.models import Branch
from clinic.services.lookups import (
    invalidate_lookup_caches,
    list_payment_modes,
    list_services_with_rates,
    payment_modes_cache_key,
    services_cache_key,
)
from clinic.services.scope import Scope


class Command(BaseCommand):
    help = "Warm and refresh lookup caches; broadcast WebSocket refresh event."

    def handle(self, *args, **options):
        now = timezone.now()
        keys_refreshed = []

        invalidate_lookup_caches()
        list_payment_modes()
        keys_refreshed.append(payment_modes_cache_key())

        # services with rates, per branch
        for branch in Branch.objects.filter(is_active=True).only('id', 'organization_id'):
            scope = Scope(branch.organization_id, branch.id)
            invalidate_lookup_caches(scope)
            list_services_with_rates(scope)
            keys_refreshed.append(services_cache_key(scope))

        channel_layer = get_channel_layer()
        if channel_layer is not None:
            event = {"type": "broadcast.refresh", "version": int(now.timestamp()), "ts": now.isoformat(),
                     "keys": keys_refreshed[:50]}
            async_to_sync(channel_layer.group_send)("updates", event)

        self.stdout.write(self.style.SUCCESS(f"Refreshed {len(keys_refreshed)} keys at {now}"))
