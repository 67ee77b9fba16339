"""Split raw response bytes into candidate JSON fragments."""

from __future__ import annotations

import codecs


class FrameDecoder:
    """Turn byte chunks into newline-delimited text fragments.

    A record may span several chunks and several chunks may hold many
    records; the decoder only splits on ``"\\n"`` and leaves reassembly
    to the :class:`~chat_stream.streaming.record_parser.RecordParser`.
    Decoding is incremental, so a UTF-8 sequence cut by a chunk boundary
    is completed by the next chunk instead of being replaced.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def feed(self, chunk: bytes) -> list[str]:
        return self._split(self._decoder.decode(chunk))

    def finish(self) -> list[str]:
        """Flush bytes still held by the decoder at end of stream."""
        return self._split(self._decoder.decode(b"", final=True))

    @staticmethod
    def _split(text: str) -> list[str]:
        return [piece for piece in text.split("\n") if piece]
