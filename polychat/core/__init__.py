"""
Conversation engine, model registry, streaming and provider adapters.
"""
from .chat import Chat
from .interfaces import ChatObserverInterface, ProviderInterface
from .model_registry import ModelRegistry
from .models import (
    Attachment, AttachmentType, ChatRequest, Message, ModelInfo, ModelPricing,
    ProviderResponse, Role, StopReason, StreamDelta, TokenUsage, ToolCallFragment,
)
from .observers import BaseChatObserver, InMemoryMessageStore
from .provider_factory import ProviderFactory
from .streaming import NDJSONDecoder, SSEDecoder, StreamAccumulator, StreamEvent, iter_stream_deltas

__all__ = [
    'Chat',
    'ChatObserverInterface',
    'ProviderInterface',
    'ModelRegistry',
    'Attachment',
    'AttachmentType',
    'ChatRequest',
    'Message',
    'ModelInfo',
    'ModelPricing',
    'ProviderResponse',
    'Role',
    'StopReason',
    'StreamDelta',
    'TokenUsage',
    'ToolCallFragment',
    'BaseChatObserver',
    'InMemoryMessageStore',
    'ProviderFactory',
    'NDJSONDecoder',
    'SSEDecoder',
    'StreamAccumulator',
    'StreamEvent',
    'iter_stream_deltas',
]
