"""
Streaming Protocol - Frame Decoder

Splits a raw byte/text stream into complete frames. Chunks may end anywhere,
including inside a multi-byte character or between the two newlines of a
separator. Only structure is handled here; payloads are parsed by the normalizer.
"""

import codecs
import logging
from typing import AsyncIterable, AsyncIterator, List, Union

from .config import FRAME_SEPARATOR, DISCARD_PARTIAL_FRAME_ON_CLOSE

logger = logging.getLogger(__name__)

Chunk = Union[bytes, bytearray, str]


class FrameDecoder:
    """
    Incremental frame splitter scoped to one open stream.

    Usage:
        decoder = FrameDecoder()
        for chunk in chunks:
            for frame in decoder.feed(chunk):
                ...
        decoder.close()
    """

    def __init__(self, separator: str = FRAME_SEPARATOR):
        self.separator = separator
        self._buffer = ""
        self._text_decoder = codecs.getincrementaldecoder("utf-8")()
        self.frames_emitted = 0
        self.chunks_dropped = 0

    @property
    def pending(self) -> str:
        """Incomplete tail waiting for the next chunk."""
        return self._buffer

    def _decode(self, chunk: Chunk) -> str:
        if isinstance(chunk, str):
            return chunk
        try:
            return self._text_decoder.decode(bytes(chunk))
        except UnicodeDecodeError as e:
            # Drop this chunk's contribution and start clean on the next one
            self._text_decoder.reset()
            self.chunks_dropped += 1
            logger.warning(f"⚠️ Dropping undecodable chunk ({len(chunk)} bytes): {e}")
            return ""

    def feed(self, chunk: Chunk) -> List[str]:
        """
        Append a chunk and return every frame it completed.

        Args:
            chunk: Raw bytes or text, split at an arbitrary boundary

        Returns:
            Complete frames in arrival order (separator stripped). Empty
            segments between consecutive separators are skipped.
        """
        text = self._decode(chunk)
        if not text:
            return []

        self._buffer += text
        # A trailing "\r" stays in the buffer until its "\n" arrives
        self._buffer = self._buffer.replace("\r\n", "\n")

        segments = self._buffer.split(self.separator)
        self._buffer = segments.pop()

        frames = [segment for segment in segments if segment.strip()]
        self.frames_emitted += len(frames)
        return frames

    def close(self) -> List[str]:
        """
        End of stream. With the default policy the partial tail is discarded
        and nothing is returned.
        """
        tail = self._buffer
        self._buffer = ""
        self._text_decoder.reset()
        if not tail.strip():
            return []
        if DISCARD_PARTIAL_FRAME_ON_CLOSE:
            logger.debug(f"Discarding {len(tail)} chars of partial frame at stream close")
            return []
        self.frames_emitted += 1
        return [tail]


async def decode_frames(chunks: AsyncIterable[Chunk]) -> AsyncIterator[str]:
    """Lazily yield complete frames from an async chunk source."""
    decoder = FrameDecoder()
    try:
        async for chunk in chunks:
            for frame in decoder.feed(chunk):
                yield frame
    finally:
        leftover = decoder.close()
    for frame in leftover:
        yield frame
