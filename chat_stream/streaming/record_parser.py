"""Reassemble JSON records from stream fragments."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from loguru import logger
from pydantic import ValidationError

from ..models.stream_record import StreamRecord
from ..utils.error_handler import StreamRecordError

HEARTBEAT = "{}"


class ParseStatus(str, Enum):
    PARSED = "parsed"
    INCOMPLETE = "incomplete"
    SKIPPED = "skipped"


@dataclass
class ParseResult:
    status: ParseStatus
    record: StreamRecord | None = None


class RecordParser:
    """Accumulate fragments in a running buffer until they form a record.

    The buffer survives across chunks and is only reset once a JSON
    document has been decoded from it.  Whether the buffer is complete is
    decided by ``json.loads`` alone.  A populated ``error`` field in a
    decoded record is fatal and raised as :class:`StreamRecordError`.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def buffer(self) -> str:
        return self._buffer

    def try_parse(self, fragment: str) -> ParseResult:
        if not fragment or (not self._buffer and fragment == HEARTBEAT):
            return ParseResult(ParseStatus.SKIPPED)

        self._buffer += fragment
        if self._buffer == HEARTBEAT:
            self._buffer = ""
            return ParseResult(ParseStatus.SKIPPED)

        try:
            document = json.loads(self._buffer)
        except json.JSONDecodeError:
            logger.debug("Incomplete message. Continuing...")
            return ParseResult(ParseStatus.INCOMPLETE)

        self._buffer = ""
        try:
            record = StreamRecord.model_validate(document)
        except ValidationError as exc:
            logger.error("Malformed stream record: {}", exc)
            raise StreamRecordError(None) from exc

        if record.is_error:
            logger.error("Backend signalled an error: {}", record.error)
            raise StreamRecordError(record.error_text)
        return ParseResult(ParseStatus.PARSED, record)
