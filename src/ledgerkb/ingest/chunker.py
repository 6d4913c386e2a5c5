"""Chunker — recursive character splitting with overlap.

The text is split on the coarsest separator that occurs in it
(paragraph, line, word, character); pieces that are still too large are
split again with the next separator. Adjacent small pieces are merged back
into windows of at most ``chunk_size`` characters, and each new window
starts with up to ``chunk_overlap`` characters carried over from the end of
the previous one.

Output is a pure function of (text, chunk_size, chunk_overlap).
"""

from __future__ import annotations

_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", " ", "")


class Chunker:
    """Split a document into overlapping chunks.

    Args:
        chunk_size: Maximum characters per chunk.
        chunk_overlap: Characters shared between consecutive chunks.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def split(self, text: str) -> list[str]:
        """Return the chunk sequence for *text*; empty text yields []."""
        if not text.strip():
            return []
        return self._split(text, _SEPARATORS)

    def _split(self, text: str, separators: tuple[str, ...]) -> list[str]:
        separator = separators[-1]
        remaining: tuple[str, ...] = ()
        for i, sep in enumerate(separators):
            if sep == "" or sep in text:
                separator = sep
                remaining = separators[i + 1 :]
                break

        pieces = text.split(separator) if separator else list(text)

        chunks: list[str] = []
        small: list[str] = []
        for piece in pieces:
            if not piece:
                continue
            if len(piece) <= self.chunk_size:
                small.append(piece)
                continue
            if small:
                chunks.extend(self._merge(small, separator))
                small = []
            if remaining:
                chunks.extend(self._split(piece, remaining))
            else:
                chunks.append(piece)
        if small:
            chunks.extend(self._merge(small, separator))
        return chunks

    def _merge(self, pieces: list[str], separator: str) -> list[str]:
        """Greedily join *pieces* into windows, keeping a tail for overlap."""
        sep_len = len(separator)
        merged: list[str] = []
        window: list[str] = []
        total = 0

        for piece in pieces:
            extra = len(piece) + (sep_len if window else 0)
            if window and total + extra > self.chunk_size:
                self._emit(merged, separator.join(window))
                # Drop from the front until the tail fits the overlap and the
                # next piece fits the window.
                while window and (
                    total > self.chunk_overlap
                    or total + len(piece) + sep_len > self.chunk_size
                ):
                    total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                    window.pop(0)
            window.append(piece)
            total += len(piece) + (sep_len if len(window) > 1 else 0)

        if window:
            self._emit(merged, separator.join(window))
        return merged

    @staticmethod
    def _emit(out: list[str], chunk: str) -> None:
        chunk = chunk.strip()
        if chunk:
            out.append(chunk)
