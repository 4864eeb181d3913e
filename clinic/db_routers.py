"""Send reads to the ``replica`` alias when it is configured."""
import random

from django.conf import settings


class ReadReplicaRouter:
    def db_for_read(self, model, **hints):
        if "replica" in settings.DATABASES:
            return random.choice(["default", "replica"]) if settings.DEBUG else "replica"
        return "default"

    def db_for_write(self, model, **hints):
        return "default"

    def allow_relation(self, obj1, obj2, **hints):
        return True

    def allow_migrate(self, db, app_label, model_name=None, **hints):
        return db == "default"
