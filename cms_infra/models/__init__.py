# cms_infra/models/__init__.py
from .outbox import OutboxEvent, OutboxStatus

# Export all models
__all__ = [
    "OutboxEvent",
    "OutboxStatus",
]
