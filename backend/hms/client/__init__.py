from hms.client.api import ApiError, HMSApiClient
from hms.client.cache import NotificationCache
from hms.client.channel import ChannelState, NotificationChannel
from hms.client.models import Notification
from hms.client.permissions import PermissionContext
from hms.client.session import ClientSession

__all__ = [
    "ApiError", "HMSApiClient", "NotificationCache", "ChannelState",
    "NotificationChannel", "Notification", "PermissionContext", "ClientSession",
]
