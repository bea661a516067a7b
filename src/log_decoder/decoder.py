"""Byte-to-text decoding that is safe to call from any number of concurrent requests.

The codec lookup is done once and shared: `codecs.CodecInfo` is immutable.
Every `decode` call builds its own incremental decoder from it, so the
buffering state of one call can never be observed by another and no lock is
needed.
"""

from __future__ import annotations

import codecs
import logging
from typing import Literal

from log_decoder.errors import DecodeFailure

logger = logging.getLogger(__name__)

DecodeErrors = Literal["strict", "replace"]


class Decoder:
    def __init__(self, encoding: str = "utf-8", errors: DecodeErrors = "strict") -> None:
        self._codec: codecs.CodecInfo = codecs.lookup(encoding)
        self.encoding: str = self._codec.name
        self.errors: DecodeErrors = errors

    def decode(self, data: bytes) -> str:
        """Decode `data` as text.

        With `errors="strict"` invalid input raises `DecodeFailure` chained to
        the `UnicodeDecodeError`; with `errors="replace"` it yields U+FFFD.
        """

        if not data:
            return ""

        engine = self._codec.incrementaldecoder(self.errors)
        try:
            return engine.decode(data, final=True)
        except Exception as e:
            logger.debug("decode failed encoding=%s size=%d", self.encoding, len(data))
            raise DecodeFailure(f"Decoder failed ({self.encoding})") from e
