"""
Batch engine.

Assembles batches, derives their canonical messages, collects signatures
and submits the result.
"""

from zkbatch.engine.codec import CanonicalMessage, MessageCodec
from zkbatch.engine.collector import SignatureCollector, SignatureSet
from zkbatch.engine.assembler import BatchAssembler
from zkbatch.engine.submitter import BatchSubmitter, TransactionFailed, TransactionHandle, await_all

__all__ = [
    "CanonicalMessage",
    "MessageCodec",
    "SignatureCollector",
    "SignatureSet",
    "BatchAssembler",
    "BatchSubmitter",
    "TransactionFailed",
    "TransactionHandle",
    "await_all",
]
