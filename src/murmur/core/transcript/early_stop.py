import struct
import zlib
from dataclasses import dataclass
from typing import Optional, Sequence

from ...utils.logger import get_logger

logger = get_logger(__name__)


def compression_ratio(tokens: Sequence[int]) -> float:
    """Ratio of raw to zlib-compressed size of a token sequence.

    Highly repetitive output compresses well, so degenerate decoding loops
    show up as a large ratio.
    """
    if not tokens:
        return 0.0
    raw = struct.pack(f"<{len(tokens)}I", *(t & 0xFFFFFFFF for t in tokens))
    return len(raw) / len(zlib.compress(raw))


@dataclass(frozen=True)
class EarlyStopPolicy:
    compression_check_window: int = 60
    compression_ratio_threshold: float = 2.4
    logprob_threshold: float = -1.0

    def should_stop(
        self, tokens: Sequence[int], avg_logprob: Optional[float]
    ) -> bool:
        window = self.compression_check_window
        if window > 0 and len(tokens) > window:
            ratio = compression_ratio(tokens[-window:])
            if ratio > self.compression_ratio_threshold:
                logger.debug(
                    f"Early stopping due to compression threshold ({ratio:.2f})"
                )
                return True

        if avg_logprob is not None and avg_logprob < self.logprob_threshold:
            logger.debug(f"Early stopping due to logprob threshold ({avg_logprob:.2f})")
            return True

        return False
