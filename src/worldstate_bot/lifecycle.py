from datetime import datetime

from .models import LifecycleStatus


def lifecycle_status(
    activation_at: datetime, expiry_at: datetime, now: datetime
) -> LifecycleStatus:
    """upcoming before activation, active until expiry (exclusive), then expired."""
    if now < activation_at:
        return LifecycleStatus.UPCOMING
    if now < expiry_at:
        return LifecycleStatus.ACTIVE
    return LifecycleStatus.EXPIRED
