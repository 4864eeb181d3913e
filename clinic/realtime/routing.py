from django.urls import path

from clinic.realtime.consumers import AppointmentsConsumer, UpdatesConsumer

websocket_urlpatterns = [
    path("ws/updates/", UpdatesConsumer.as_asgi()),
    path("ws/appointments/", AppointmentsConsumer.as_asgi()),
]
