"""
Text Segmenter for the Streaming TTS Pipeline.

This module splits a streaming model reply into speakable chunks. It has two
layers:

- ``TextSegmenter`` is the pure, stateful chunking policy. It slices its
  working buffer exactly, so the raw spans it returns always concatenate back
  to the text it was fed.
- ``ResponseStreamSegmenter`` drives a model request through
  :class:`~echo_backend.chat_stream.ChatStreamClient`, feeds every delta to a
  ``TextSegmenter``, normalizes each span and hands it on as an ordered
  :class:`~echo_backend.schemas.conversation.TextChunk`.

Chunking policy, evaluated after every buffer update:

1. Paragraphs terminated by a line break are flushed one chunk each.
2. Complete sentences accumulate into a group, flushed once the group passes
   ``group_chars`` characters.
3. An unterminated tail longer than ``force_break_chars`` is broken at the
   last soft boundary (``,;:`` then whitespace) inside ``break_window``.
4. Whatever remains is flushed when the stream ends.

Usage:
    segmenter = ResponseStreamSegmenter(chat_client)
    token = CancellationToken()
    full_text = await segmenter.run("Tell me a joke", on_chunk, token)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Union

from ...errors import TurnCancelled
from ...schemas.conversation import TextChunk
from ..cancellation import CancellationToken
from ..text_normalizer import normalize

if TYPE_CHECKING:
    from ...chat_stream import ChatStreamClient

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[TextChunk], Union[None, Awaitable[None]]]


class TextSegmenter:
    """
    Stateful segmenter that splits streaming text into speakable spans.

    Attributes:
        group_chars: Sentence groups are flushed once longer than this
        force_break_chars: Unterminated tails longer than this are force-split
        break_window: Maximum size of a force-split span
    """

    _PARAGRAPH_BREAK = re.compile(r"[ \t]*\n\s*")
    # Single and double digit list markers ("1. ", "12. ") are not sentence ends
    _SENTENCE_END = re.compile(r"(?<!\b\d)(?<!\b\d\d)[.!?]+[\"'”’)\]]*\s+")
    _SOFT_BREAK = re.compile(r"[,;:]\s+")
    _WHITESPACE = re.compile(r"\s+")

    def __init__(
        self,
        group_chars: int = 250,
        force_break_chars: int = 200,
        break_window: int = 250,
    ):
        self.group_chars = group_chars
        self.force_break_chars = force_break_chars
        self.break_window = break_window
        self._buffer = ""
        self._total_emitted = 0

    def consume(self, chunk: str) -> List[str]:
        """
        Add a text delta and return any spans that are ready to speak.

        Args:
            chunk: Text fragment from the model stream

        Returns:
            Raw (un-normalized) spans in generation order
        """
        if not chunk:
            return []

        self._buffer += chunk
        spans = self._take_paragraphs()
        spans.extend(self._take_sentence_groups())
        spans.extend(self._take_forced_breaks())
        self._total_emitted += sum(len(span) for span in spans)
        return spans

    def flush(self) -> Optional[str]:
        """Return the remaining buffer, if it holds any visible text."""
        remaining, self._buffer = self._buffer, ""
        if not remaining.strip():
            return None
        self._total_emitted += len(remaining)
        return remaining

    def reset(self) -> None:
        """Reset segmenter state for reuse."""
        self._buffer = ""
        self._total_emitted = 0

    @property
    def total_emitted_chars(self) -> int:
        """Total raw characters emitted across all spans."""
        return self._total_emitted

    @property
    def buffer_size(self) -> int:
        """Current buffer size in characters."""
        return len(self._buffer)

    def _take_paragraphs(self) -> List[str]:
        last_break = None
        for match in self._PARAGRAPH_BREAK.finditer(self._buffer):
            last_break = match
        if last_break is None:
            return []

        completed = self._buffer[: last_break.end()]
        self._buffer = self._buffer[last_break.end():]

        spans: List[str] = []
        carry = ""
        start = 0
        for match in self._PARAGRAPH_BREAK.finditer(completed):
            span = carry + completed[start: match.end()]
            start = match.end()
            if span.strip():
                spans.append(span)
                carry = ""
            elif spans:
                spans[-1] += span
            else:
                carry = span
        if carry:
            # Only blank lines so far; keep them in front of the next paragraph
            self._buffer = carry + self._buffer
        return spans

    def _sentence_ends(self) -> List[int]:
        return [match.end() for match in self._SENTENCE_END.finditer(self._buffer)]

    def _take_sentence_groups(self) -> List[str]:
        spans: List[str] = []
        while True:
            cut = next(
                (end for end in self._sentence_ends() if end > self.group_chars),
                None,
            )
            if cut is None:
                return spans
            spans.append(self._buffer[:cut])
            self._buffer = self._buffer[cut:]

    def _take_forced_breaks(self) -> List[str]:
        spans: List[str] = []
        while True:
            ends = self._sentence_ends()
            tail_start = ends[-1] if ends else 0
            if len(self._buffer) - tail_start <= self.force_break_chars:
                return spans
            if tail_start:
                # Complete sentences go out first so order is preserved
                spans.append(self._buffer[:tail_start])
                self._buffer = self._buffer[tail_start:]
            cut = self._soft_break_position(self._buffer)
            spans.append(self._buffer[:cut])
            self._buffer = self._buffer[cut:]

    def _soft_break_position(self, text: str) -> int:
        window = text[: self.break_window]
        cut = 0
        for match in self._SOFT_BREAK.finditer(window):
            cut = match.end()
        if cut:
            return cut
        for match in self._WHITESPACE.finditer(window):
            if match.start() > 0:
                cut = match.end()
        return cut or len(window)


@dataclass
class _StreamProgress:
    parts: List[str] = field(default_factory=list)
    next_index: int = 0

    @property
    def text(self) -> str:
        return "".join(self.parts)


class ResponseStreamSegmenter:
    """Stream a model reply and emit normalized, ordered chunks."""

    def __init__(
        self,
        client: "ChatStreamClient",
        *,
        normalizer: Callable[[str], str] = normalize,
        segmenter_factory: Callable[[], TextSegmenter] = TextSegmenter,
    ):
        self._client = client
        self._normalize = normalizer
        self._segmenter_factory = segmenter_factory

    async def run(
        self,
        prompt: str,
        on_chunk: ChunkCallback,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Stream the reply to ``prompt``, calling ``on_chunk`` for each chunk.

        Returns the full generated text (or the part generated before the
        token fired). Cancellation returns quietly; transport failures raise
        :class:`~echo_backend.errors.TransportError`.
        """
        token = token or CancellationToken()
        progress = _StreamProgress()

        reader = asyncio.create_task(
            self._consume(prompt, on_chunk, token, progress),
            name="response-stream-reader",
        )
        canceller = asyncio.create_task(token.wait(), name="response-stream-cancel")
        try:
            await asyncio.wait({reader, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            canceller.cancel()
            if not reader.done():
                reader.cancel()

        if not reader.done() or reader.cancelled():
            await asyncio.wait({reader})
        if reader.cancelled() or isinstance(reader.exception(), TurnCancelled):
            logger.info(
                "Response stream cancelled after %d chunk(s)", progress.next_index
            )
            return progress.text
        return reader.result()

    async def _consume(
        self,
        prompt: str,
        on_chunk: ChunkCallback,
        token: CancellationToken,
        progress: _StreamProgress,
    ) -> str:
        segmenter = self._segmenter_factory()
        request = self._client.build_request(prompt)

        async with aclosing(self._client.stream_text(request)) as stream:
            async for delta in stream:
                token.raise_if_cancelled()
                progress.parts.append(delta)
                for span in segmenter.consume(delta):
                    await self._emit(span, on_chunk, token, progress)

        final = segmenter.flush()
        if final:
            await self._emit(final, on_chunk, token, progress)

        logger.info(
            "Response stream complete: %d chars in %d chunk(s)",
            len(progress.text),
            progress.next_index,
        )
        return progress.text

    async def _emit(
        self,
        span: str,
        on_chunk: ChunkCallback,
        token: CancellationToken,
        progress: _StreamProgress,
    ) -> None:
        token.raise_if_cancelled()
        text = self._normalize(span)
        if not text:
            return
        chunk = TextChunk(sequence_index=progress.next_index, text=text)
        progress.next_index += 1
        logger.debug("Chunk %d (%d chars): %s", chunk.sequence_index, len(text), text[:80])
        result = on_chunk(chunk)
        if inspect.isawaitable(result):
            await result


__all__ = ["ChunkCallback", "ResponseStreamSegmenter", "TextSegmenter"]
