"""
Transcript segments and the confirmed/unconfirmed segment pools.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


class SegmentPools:
    """
    Two ordered pools of transcript segments.

    ``unconfirmed`` is replaced wholesale on every decoding step. ``confirmed``
    only ever grows, and only through :meth:`finalize`.
    """

    def __init__(self):
        self._confirmed: List[TranscriptSegment] = []
        self._unconfirmed: List[TranscriptSegment] = []

    @property
    def confirmed(self) -> Tuple[TranscriptSegment, ...]:
        return tuple(self._confirmed)

    @property
    def unconfirmed(self) -> Tuple[TranscriptSegment, ...]:
        return tuple(self._unconfirmed)

    @property
    def last_confirmed_end(self) -> float:
        if not self._confirmed:
            return 0.0
        return self._confirmed[-1].end

    def replace_unconfirmed(self, segments: Iterable[TranscriptSegment]) -> None:
        self._unconfirmed = list(segments)

    def finalize(self) -> int:
        """Move all unconfirmed segments into the confirmed pool.

        Returns the number of segments moved. Calling this with an empty
        unconfirmed pool is a no-op.
        """
        moved = len(self._unconfirmed)
        if moved:
            self._confirmed.extend(self._unconfirmed)
            self._unconfirmed = []
        return moved

    def clear(self) -> None:
        self._confirmed = []
        self._unconfirmed = []

    def all_segments(self) -> Tuple[TranscriptSegment, ...]:
        return tuple(self._confirmed) + tuple(self._unconfirmed)


def format_timestamp(seconds: float) -> str:
    return f"{seconds:.2f}"


def format_segments(
    segments: Iterable[TranscriptSegment], with_timestamps: bool = False
) -> List[str]:
    lines = []
    for segment in segments:
        text = segment.text.strip()
        if with_timestamps:
            lines.append(
                f"[{format_timestamp(segment.start)} --> "
                f"{format_timestamp(segment.end)}] {text}"
            )
        else:
            lines.append(text)
    return lines
