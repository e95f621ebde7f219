"""
Incremental translator from raw CLI output to ``ParsedEvent`` objects.

Handles:
- chunk boundaries anywhere, including inside a multi-byte UTF-8 glyph
- buffering of the trailing incomplete line between calls
- delegation of each complete line to a ``LineClassifier``
"""

import codecs
from typing import Iterator, Optional, Union

from termrelay.output.classifier import LineClassifier, PatternClassifier
from termrelay.output.events import ParsedEvent


class OutputTranslator:
    """Stateful line splitter for one session's stdout."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        classifier: Optional[LineClassifier] = None,
    ):
        self.session_id = session_id
        self.classifier: LineClassifier = classifier or PatternClassifier()
        self._remaining = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def remaining(self) -> str:
        """The buffered text after the last newline seen so far."""
        return self._remaining

    def feed(self, chunk: Union[str, bytes]) -> Iterator[ParsedEvent]:
        """
        Consume a chunk and return an iterator over the events of the lines it
        completes.

        The buffer is updated immediately; classification happens lazily as
        the iterator is consumed.
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk

        lines = (self._remaining + text).split("\n")
        self._remaining = lines.pop()

        return self._classify_lines(lines)

    def _classify_lines(self, lines: list) -> Iterator[ParsedEvent]:
        for line in lines:
            event = self.classifier.classify(line)
            if event is not None:
                yield event

    def reset(self) -> None:
        """Drop any buffered partial line and pending undecoded bytes."""
        self._remaining = ""
        self._decoder.reset()
