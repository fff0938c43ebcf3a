import json

from channels.generic.websocket import AsyncWebsocketConsumer

from clinic.services.queue import queue_group


class UpdatesConsumer(AsyncWebsocketConsumer):
    """Broadcast channel for cache refreshes (see ``refresh_caches``)."""
    GROUP = "updates"

    async def connect(self):
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def broadcast_refresh(self, event):
        # event: {"type": "broadcast.refresh", "version": int, "ts": "...", "keys": [...]}
        await self.send(json.dumps(event))


class QueueConsumer(AsyncWebsocketConsumer):
    """Live queue for one branch.

    Only staff of that branch may subscribe.  Close codes: 4001 bad path,
    4003 not allowed.
    """

    async def connect(self):
        try:
            self.branch_id = int(self.scope["url_route"]["kwargs"]["branch_id"])
        except (KeyError, TypeError, ValueError):
            await self.close(code=4001)
            return

        user = self.scope.get("user")
        if not (user and user.is_authenticated) or user.branch_id != self.branch_id:
            await self.close(code=4003)
            return

        self.group_name = queue_group(self.branch_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def queue_changed(self, event):
        # event: {"type": "queue.changed", "branchId": int, "visitId": int, "status": "...", ...}
        await self.send(json.dumps(event))
