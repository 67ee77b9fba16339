"""Streaming pipeline: byte chunks to fragments, records and assembled messages."""

from .frame_decoder import FrameDecoder  # noqa: F401
from .record_parser import ParseResult, ParseStatus, RecordParser  # noqa: F401
from .message_assembler import ExchangeContext, MessageAssembler  # noqa: F401
