"""Remote session backends that perform the actual message delivery."""
from channels.base import RemoteSession, SessionMetrics, decode_cookie_blob
from channels.scripted_session import ScriptedSession, DeliveredMessage
from channels.factory import create_session

__all__ = [
    "RemoteSession", "SessionMetrics", "decode_cookie_blob",
    "ScriptedSession", "DeliveredMessage",
    "create_session",
]
