"""Streaming bridge between a chat and an AI coding-assistant CLI."""
from .cancel import CancelToken, cancel, terminate
from .channel import EventChannel
from .config import BridgeConfig, load_yaml_config
from .errors import (
    BridgeError,
    ChannelDisconnected,
    ChannelEmpty,
    InvalidSessionId,
    OutboundError,
    ProcessError,
    SpawnError,
    StaleSession,
    WriteError,
)
from .events import (
    Done,
    Error,
    Init,
    StreamEvent,
    TaskNotification,
    Text,
    ToolResult,
    ToolUse,
)
from .models import BridgeResponse, ChatSession, LoopState, RenderState, RequestContext
from .normalizer import parse_stream_line
from .rate_limit import RateLimiter
from .runner import StreamRunner

__all__ = [
    # Producer / consumer
    "StreamRunner",
    "EventChannel",
    "CancelToken",
    "cancel",
    "terminate",
    "RateLimiter",
    "parse_stream_line",
    # Config
    "BridgeConfig",
    "load_yaml_config",
    # Models
    "BridgeResponse",
    "ChatSession",
    "LoopState",
    "RenderState",
    "RequestContext",
    # Events
    "StreamEvent",
    "Init",
    "Text",
    "ToolUse",
    "ToolResult",
    "TaskNotification",
    "Done",
    "Error",
    # Errors
    "BridgeError",
    "SpawnError",
    "WriteError",
    "InvalidSessionId",
    "StaleSession",
    "ProcessError",
    "OutboundError",
    "ChannelEmpty",
    "ChannelDisconnected",
]
