"""
Incremental decoding of streamed provider responses.

Network chunks are split into logical events by a framing decoder (SSE or
newline-delimited JSON), each event is turned into StreamDelta values by the
provider adapter, and a StreamAccumulator collects the deltas of one stream
into a ProviderResponse.
"""
import codecs
import json
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

from ..tools.models import ToolCall
from ..utils.logger import LoggerFactory, LoggerInterface
from .models import ProviderResponse, StopReason, StreamDelta, TokenUsage


@dataclass
class StreamEvent:
    """One logical event: an SSE block or an NDJSON line."""
    data: str
    event: Optional[str] = None

    def json(self) -> Any:
        return json.loads(self.data)


class _TextDecoder:
    """Shared utf-8 handling; multi-byte sequences may be split across chunks."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def _append(self, chunk: Union[bytes, str]) -> None:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")


class SSEDecoder(_TextDecoder):
    """Server-Sent Events framing. Events are separated by a blank line."""

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        self._append(chunk)
        events = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            event = self._parse_block(block)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(b"", final=True)
        block, self._buffer = self._buffer, ""
        event = self._parse_block(block)
        return [event] if event is not None else []

    @staticmethod
    def _parse_block(block: str) -> Optional[StreamEvent]:
        event_name = None
        data_lines = []
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                event_name = value
            elif field == "data":
                data_lines.append(value)
        if not data_lines:
            return None
        return StreamEvent(data="\n".join(data_lines), event=event_name)


class NDJSONDecoder(_TextDecoder):
    """One JSON document per line."""

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        self._append(chunk)
        events = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if line.strip():
                events.append(StreamEvent(data=line.strip()))
        return events

    def flush(self) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer.strip(), ""
        return [StreamEvent(data=line)] if line else []


class StreamAccumulator:
    """
    Collects the deltas of a single stream.

    Tool call fragments are merged by index; ids and names may arrive in any
    chunk and arguments are concatenated. Arguments are only parsed as JSON
    once a call is complete. Never reuse an accumulator across streams.
    """

    def __init__(self, logger: Optional[LoggerInterface] = None):
        self.logger = logger or LoggerFactory.create(name="stream_accumulator")
        self._content: List[str] = []
        self._tool_calls: Dict[int, Dict[str, Any]] = {}
        self.usage = TokenUsage()
        self.stop_reason: Optional[StopReason] = None
        self.model: Optional[str] = None
        self.finished = False

    @property
    def content(self) -> str:
        return "".join(self._content)

    @property
    def tool_call_count(self) -> int:
        return len(self._tool_calls)

    def has_tool_call(self, index: int) -> bool:
        return index in self._tool_calls

    def add(self, delta: StreamDelta) -> None:
        if delta.content:
            self._content.append(delta.content)

        fragment = delta.tool_call
        if fragment is not None:
            entry = self._tool_calls.setdefault(
                fragment.index, {"id": None, "name": "", "arguments": [], "done": False})
            if fragment.id:
                entry["id"] = fragment.id
            if fragment.name:
                entry["name"] += fragment.name
            if fragment.arguments:
                entry["arguments"].append(fragment.arguments)
            entry["done"] = entry["done"] or fragment.done

        if delta.usage is not None:
            if delta.usage.input_tokens is not None:
                self.usage.input_tokens = delta.usage.input_tokens
            if delta.usage.output_tokens is not None:
                self.usage.output_tokens = delta.usage.output_tokens
        if delta.stop_reason is not None:
            self.stop_reason = delta.stop_reason
        if delta.model:
            self.model = delta.model
        if delta.is_final:
            self.finish()

    def finish(self) -> None:
        """Mark the end of the stream; every pending tool call is complete."""
        self.finished = True
        for entry in self._tool_calls.values():
            entry["done"] = True

    def _parse_arguments(self, name: str, raw: str) -> Dict[str, Any]:
        if not raw.strip():
            return {}
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError:
            self.logger.warning(f"Invalid JSON arguments for tool call '{name}': {raw!r}")
            return {"_raw_args": raw}
        if not isinstance(arguments, dict):
            self.logger.warning(f"Tool call '{name}' arguments are not an object: {raw!r}")
            return {"_raw_args": raw}
        return arguments

    def completed_tool_calls(self) -> List[ToolCall]:
        """Tool calls whose completion was signalled, in index order."""
        calls = []
        for index in sorted(self._tool_calls):
            entry = self._tool_calls[index]
            if not entry["done"]:
                continue
            calls.append(ToolCall(
                id=entry["id"] or f"call_{uuid.uuid4().hex[:24]}",
                name=entry["name"],
                arguments=self._parse_arguments(entry["name"], "".join(entry["arguments"])),
            ))
        return calls

    def to_response(self) -> ProviderResponse:
        if not self.finished:
            self.finish()
        tool_calls = self.completed_tool_calls()
        stop_reason = self.stop_reason
        if stop_reason is None:
            stop_reason = StopReason.TOOL_USE if tool_calls else StopReason.STOP
        return ProviderResponse(
            content=self.content or None,
            tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=self.usage.model_copy(),
            model=self.model,
        )


ParsedChunk = Union[StreamDelta, Iterable[StreamDelta], None]


def _as_deltas(parsed: ParsedChunk) -> List[StreamDelta]:
    if parsed is None:
        return []
    if isinstance(parsed, StreamDelta):
        return [parsed]
    return list(parsed)


async def iter_stream_deltas(chunks: AsyncIterator[bytes],
                             adapter: Any,
                             accumulator: StreamAccumulator,
                             decoder: Optional[Union[SSEDecoder, NDJSONDecoder]] = None
                             ) -> AsyncIterator[StreamDelta]:
    """
    Turn raw network chunks into StreamDelta values.

    Every delta is added to `accumulator` before it is yielded. The sequence
    always ends with an `is_final` delta, synthesized if the provider closes the
    stream without one. In-band error events raise the adapter's classified
    error.

    Args:
        chunks: Raw body chunks as they arrive
        adapter: Object with parse_stream_chunk(event, accumulator)
        accumulator: Fresh accumulator for this stream
        decoder: Framing decoder; SSE by default
    """
    decoder = decoder or SSEDecoder()

    async for chunk in chunks:
        for event in decoder.feed(chunk):
            for delta in _as_deltas(adapter.parse_stream_chunk(event, accumulator)):
                accumulator.add(delta)
                yield delta
                if delta.is_final:
                    return

    for event in decoder.flush():
        for delta in _as_deltas(adapter.parse_stream_chunk(event, accumulator)):
            accumulator.add(delta)
            yield delta
            if delta.is_final:
                return

    final = StreamDelta(is_final=True)
    accumulator.add(final)
    yield final
