"""
Parser module initialization

Streaming CSV splitting: line reading, header validation, row transforms and
bounded chunk writing.
"""

from .line_reader import LineReader, detect_bom, sniff_encoding
from .schema import SchemaValidator, split_header
from .transformer import RowTransformer, DateTimeMergeTransformer
from .chunk_writer import ChunkWriter
from .splitter import StreamSplitter, RowBound, ByteBound, BoundPolicy, bound_from_config

__all__ = [
    'LineReader',
    'detect_bom',
    'sniff_encoding',
    'SchemaValidator',
    'split_header',
    'RowTransformer',
    'DateTimeMergeTransformer',
    'ChunkWriter',
    'StreamSplitter',
    'RowBound',
    'ByteBound',
    'BoundPolicy',
    'bound_from_config',
]
