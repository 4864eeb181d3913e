import json

from channels.generic.websocket import AsyncWebsocketConsumer

from clinic.services.realtime import APPOINTMENT_GROUPS


class UpdatesConsumer(AsyncWebsocketConsumer):
    """Cache refresh notifications for dashboards."""
    GROUP = "updates"

    async def connect(self):
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def broadcast_refresh(self, event):
        # {"type": "broadcast.refresh", "version": int, "ts": "...", "keys": [...]}
        await self.send(json.dumps(event))


class AppointmentsConsumer(AsyncWebsocketConsumer):
    """Live OPD appointment board; staff only."""
    GROUP = APPOINTMENT_GROUPS[0]

    async def connect(self):
        user = self.scope.get("user")
        if not user or not user.is_authenticated:
            await self.close(code=4003)
            return
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def appointment_updated(self, event):
        await self.send(json.dumps({"event": event["event"], "data": event["data"]}))
