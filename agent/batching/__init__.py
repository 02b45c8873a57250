"""
Adaptive Batching Module.

Decides when accumulated utterance fragments are analyzed, trading
responsiveness against the risk of acting on incomplete information.
"""

from agent.batching.batch_scheduler import BatchScheduler, BatchTrigger, PendingBatch
from agent.batching.classifier import BatchDecision, BatchTimings, DelayReason

__all__ = [
    "BatchDecision",
    "BatchScheduler",
    "BatchTimings",
    "BatchTrigger",
    "DelayReason",
    "PendingBatch",
]
