"""
Streaming transcript reconciliation.

Partial decoding results arrive per window as the runtime decodes. Each window
(chunk) keeps the list of partial texts it has produced; a shorter partial
either starts a new window (streaming mode, no fallback) or replaces a bad
decode that the runtime is retrying at a higher temperature.
"""

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Tuple

from ...utils.logger import get_logger
from .early_stop import EarlyStopPolicy
from .segments import SegmentPools, TranscriptSegment

if TYPE_CHECKING:
    from ..asr.runtime import TranscriptionProgress

logger = get_logger(__name__)

CHUNK_SEPARATOR = "\n"


@dataclass
class Chunk:
    partials: List[str]
    fallbacks: int = 0

    @property
    def text(self) -> str:
        return CHUNK_SEPARATOR.join(self.partials)


class ChunkAccumulator:

    def __init__(self):
        self._chunks: Dict[int, Chunk] = {}

    def __len__(self) -> int:
        return len(self._chunks)

    def __contains__(self, chunk_id: int) -> bool:
        return chunk_id in self._chunks

    def get(self, chunk_id: int) -> Optional[Chunk]:
        return self._chunks.get(chunk_id)

    def reset(self) -> None:
        self._chunks = {}

    def apply(
        self, chunk_id: int, text: str, fallbacks: int, stream_mode: bool
    ) -> Chunk:
        chunk = self._chunks.get(chunk_id)

        if chunk is None or not chunk.partials:
            chunk = Chunk(partials=[text], fallbacks=fallbacks)
        elif len(text) >= len(chunk.partials[-1]):
            # Same window, decoder refined or extended the text
            chunk.partials[-1] = text
        elif fallbacks == chunk.fallbacks and stream_mode:
            # Shorter text without a retry means the decoder moved on
            chunk.partials.append(text)
        else:
            logger.debug(f"Fallback occurred in chunk {chunk_id}: {fallbacks}")
            chunk.partials[-1] = text
            chunk.fallbacks = fallbacks

        self._chunks[chunk_id] = chunk
        return chunk

    def preview(self) -> str:
        return CHUNK_SEPARATOR.join(
            self._chunks[chunk_id].text for chunk_id in sorted(self._chunks)
        )


@dataclass(frozen=True)
class TranscriptSnapshot:
    confirmed: Tuple[TranscriptSegment, ...] = ()
    unconfirmed: Tuple[TranscriptSegment, ...] = ()
    preview: str = ""
    fallbacks: int = 0
    decoding_loops: int = 0


@dataclass
class _RunCounters:
    current_fallbacks: int = 0
    decoding_loops: int = 0
    preview: str = ""


class TranscriptReconciler:
    """
    Owns the chunk accumulator and the segment pools for one transcript.

    All mutation goes through a single lock, so progress callbacks may arrive
    on any worker thread. Readers get immutable snapshots.
    """

    def __init__(
        self,
        policy: Optional[EarlyStopPolicy] = None,
        stream_mode: bool = False,
        on_preview: Optional[Callable[[str], None]] = None,
    ):
        self.policy = policy or EarlyStopPolicy()
        self.stream_mode = stream_mode
        self.on_preview = on_preview

        self._lock = threading.RLock()
        self._accumulator = ChunkAccumulator()
        self._pools = SegmentPools()
        self._counters = _RunCounters()

    @property
    def preview(self) -> str:
        with self._lock:
            return self._counters.preview

    @property
    def last_confirmed_end(self) -> float:
        with self._lock:
            return self._pools.last_confirmed_end

    def chunk(self, chunk_id: int) -> Optional[Chunk]:
        with self._lock:
            chunk = self._accumulator.get(chunk_id)
            if chunk is None:
                return None
            return Chunk(partials=list(chunk.partials), fallbacks=chunk.fallbacks)

    def start_run(self) -> None:
        """Forget partial state from the previous run, keep the pools."""
        with self._lock:
            self._accumulator.reset()
            self._counters = _RunCounters()

    def reset(self) -> None:
        with self._lock:
            self._accumulator.reset()
            self._pools.clear()
            self._counters = _RunCounters()

    def handle_progress(self, progress: "TranscriptionProgress") -> Optional[bool]:
        """Merge one partial decoding event.

        Returns ``False`` when the runtime should stop decoding the current
        window, ``None`` to let it continue.
        """
        chunk_id = 0 if self.stream_mode else progress.window_id

        with self._lock:
            self._accumulator.apply(
                chunk_id, progress.text, progress.fallbacks, self.stream_mode
            )
            self._counters.preview = self._accumulator.preview()
            self._counters.current_fallbacks = progress.fallbacks
            self._counters.decoding_loops += 1
            preview = self._counters.preview

        if self.on_preview is not None:
            self.on_preview(preview)

        if self.policy.should_stop(progress.tokens, progress.avg_logprob):
            return False
        return None

    def replace_unconfirmed(self, segments: Iterable[TranscriptSegment]) -> None:
        with self._lock:
            self._pools.replace_unconfirmed(segments)

    def finalize(self) -> int:
        with self._lock:
            return self._pools.finalize()

    def confirm_leading(
        self, segments: List[TranscriptSegment], keep_unconfirmed: int
    ) -> int:
        """Confirm all but the trailing ``keep_unconfirmed`` segments.

        The leading segments pass through the unconfirmed pool and
        :meth:`finalize`, so the confirmed pool still only grows there.
        """
        keep = max(0, keep_unconfirmed)
        split = max(0, len(segments) - keep)
        with self._lock:
            moved = 0
            if split:
                self._pools.replace_unconfirmed(segments[:split])
                moved = self._pools.finalize()
            self._pools.replace_unconfirmed(segments[split:])
            return moved

    def snapshot(self) -> TranscriptSnapshot:
        with self._lock:
            return TranscriptSnapshot(
                confirmed=self._pools.confirmed,
                unconfirmed=self._pools.unconfirmed,
                preview=self._counters.preview,
                fallbacks=self._counters.current_fallbacks,
                decoding_loops=self._counters.decoding_loops,
            )
