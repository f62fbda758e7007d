"""
Core interfaces for provider adapters and conversation observers.
"""
from typing import Any, Dict, Optional, Protocol, Union, Iterable, runtime_checkable

from ..exceptions import ErrorKind
from .models import ChatRequest, Message, ProviderResponse, StreamDelta


@runtime_checkable
class ProviderInterface(Protocol):
    """Translation between the normalized request/response types and one provider's wire format."""

    def build_request(self, request: ChatRequest) -> Dict[str, Any]:
        """
        Build the provider's JSON payload.

        Args:
            request: Normalized request

        Returns:
            Payload ready to be POSTed
        """
        ...

    def parse_response(self, body: Dict[str, Any]) -> ProviderResponse:
        """
        Parse a complete (non-streamed) response body.

        Args:
            body: Decoded JSON body

        Returns:
            Normalized response
        """
        ...

    def parse_stream_chunk(self, event: Any, accumulator: Any
                           ) -> Union[StreamDelta, Iterable[StreamDelta], None]:
        """
        Parse one decoded stream event.

        The accumulator is read-only here (the caller adds returned deltas to
        it). Returns a delta, several deltas, or None for events that carry
        nothing. Raises the classified error for in-band error events.
        """
        ...

    def classify_error(self, status: Optional[int], body: Any) -> ErrorKind:
        """
        Map an HTTP status and/or error body to an ErrorKind.

        Args:
            status: HTTP status, None for errors reported inside a stream
            body: Decoded error body

        Returns:
            The error classification
        """
        ...


@runtime_checkable
class ChatObserverInterface(Protocol):
    """
    Lifecycle hooks for a persistence collaborator.

    The handle returned by on_message_start is passed back to the other hooks
    for the same assistant message. on_message_abort may also follow
    on_message_end when a later round of the same call fails.
    """

    def on_message_start(self) -> Any:
        ...

    def on_message_delta(self, handle: Any, delta: StreamDelta) -> None:
        ...

    def on_message_end(self, handle: Any, message: Message) -> None:
        ...

    def on_message_abort(self, handle: Any) -> None:
        ...
