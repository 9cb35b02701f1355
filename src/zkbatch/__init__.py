"""
zkbatch

Client-side construction, multi-party authorization and atomic submission
of L2 transaction batches.
"""

__version__ = "0.1.0"

from zkbatch.core.batch import Batch, BatchStatus, ConfigurationError, TransferIntent
from zkbatch.engine.codec import MessageCodec
from zkbatch.provider.interface import OracleError

__all__ = [
    "Batch",
    "BatchStatus",
    "ConfigurationError",
    "TransferIntent",
    "MessageCodec",
    "OracleError",
]
