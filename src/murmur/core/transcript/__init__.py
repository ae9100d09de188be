from .early_stop import EarlyStopPolicy, compression_ratio
from .reconciler import Chunk, ChunkAccumulator, TranscriptReconciler, TranscriptSnapshot
from .segments import SegmentPools, TranscriptSegment, format_segments

__all__ = [
    "Chunk",
    "ChunkAccumulator",
    "EarlyStopPolicy",
    "SegmentPools",
    "TranscriptReconciler",
    "TranscriptSegment",
    "TranscriptSnapshot",
    "compression_ratio",
    "format_segments",
]
