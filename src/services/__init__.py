from src.services import (
    calendar_links,
    notification_service,
)


__all__ = [
    "calendar_links",
    "notification_service",
]
