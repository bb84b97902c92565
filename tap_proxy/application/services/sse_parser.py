"""Incremental Server-Sent Events framing."""

from dataclasses import dataclass

FRAME_DELIMITER = "\n\n"


@dataclass(frozen=True)
class SSEEvent:
    """One complete SSE frame: optional event name plus joined data lines."""

    data: str
    event: str | None = None


class SSEParser:
    """Splits an incrementally arriving text feed into SSE frames.

    Text may be split at arbitrary points; partial frames are buffered until a
    blank-line delimiter arrives. ``finalize`` flushes a trailing frame that
    was never terminated, since some transports omit the final delimiter.

    Usage:
        parser = SSEParser()
        for chunk in chunks:
            for event in parser.feed(chunk):
                handle(event)
        for event in parser.finalize():
            handle(event)
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[SSEEvent]:
        """Buffer ``chunk`` and return every frame it completed."""
        if not chunk:
            return []
        self._buffer += chunk
        return self._flush(force=False)

    def finalize(self) -> list[SSEEvent]:
        """Flush whatever is left in the buffer as a final frame."""
        return self._flush(force=True)

    def _flush(self, force: bool) -> list[SSEEvent]:
        events: list[SSEEvent] = []

        while True:
            index = self._buffer.find(FRAME_DELIMITER)
            if index == -1:
                break
            block = self._buffer[:index]
            self._buffer = self._buffer[index + len(FRAME_DELIMITER):]
            event = self._parse_block(block)
            if event is not None:
                events.append(event)

        if force and self._buffer.strip():
            remaining, self._buffer = self._buffer, ""
            event = self._parse_block(remaining)
            if event is not None:
                events.append(event)

        return events

    @staticmethod
    def _parse_block(raw: str) -> SSEEvent | None:
        if not raw:
            return None

        event_name: str | None = None
        data_lines: list[str] = []

        for line in raw.split("\n"):
            line = line.removesuffix("\r")
            if line.startswith("event:"):
                event_name = line[6:].strip()
            elif line.startswith("data:"):
                value = line[5:]
                data_lines.append(value[1:] if value.startswith(" ") else value)

        data = "\n".join(data_lines)
        # Comments and pings carry no data lines.
        if not data:
            return None
        return SSEEvent(data=data, event=event_name or None)
