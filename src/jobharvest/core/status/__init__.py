"""Live status push channel."""

from .channel import (
    KEEPALIVE_FRAME,
    ChannelError,
    ChannelFull,
    OriginLimitExceeded,
    StatusChannel,
    StatusConnection,
    format_frame,
)

__all__ = [
    "KEEPALIVE_FRAME",
    "ChannelError",
    "ChannelFull",
    "OriginLimitExceeded",
    "StatusChannel",
    "StatusConnection",
    "format_frame",
]
