"""Merging of streamed text fragments into the running response."""

from __future__ import annotations


def _overlap(text: str, fragment: str) -> int:
    """Length of the longest suffix of *text* that is a prefix of *fragment*."""
    limit = min(len(text), len(fragment))
    for size in range(limit, 0, -1):
        if text.endswith(fragment[:size]):
            return size
    return 0


class ChunkMerger:
    """Accumulates fragments and returns the part that is new.

    With ``dedupe=False`` fragments are appended verbatim. With
    ``dedupe=True`` the merger tolerates vendors that resend text it has
    already seen:

    * a fragment equal to the whole response so far is dropped;
    * a fragment that extends the whole response contributes only the suffix;
    * otherwise the longest overlap between the end of the response and the
      start of the fragment is removed.

    Genuinely repeated text (a model emitting "ha" twice) is indistinguishable
    from a resend and is suppressed in dedupe mode.

    Example:
        >>> merger = ChunkMerger(dedupe=True)
        >>> merger.push("Hello")
        'Hello'
        >>> merger.push("Hello, world")
        ', world'
        >>> merger.push("world!")
        '!'
    """

    def __init__(self, dedupe: bool = False):
        self.dedupe = dedupe
        self.text = ""

    def push(self, fragment: str) -> str:
        if not fragment:
            return ""
        if not self.dedupe:
            self.text += fragment
            return fragment

        current = self.text
        if fragment == current:
            return ""
        if current and fragment.startswith(current):
            emitted = fragment[len(current):]
        else:
            emitted = fragment[_overlap(current, fragment):]
        self.text = current + emitted
        return emitted
