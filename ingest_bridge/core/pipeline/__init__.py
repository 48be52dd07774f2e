"""Pipeline - Cola acotada, workers y coordinador."""

from .async_processor import AsyncMessageProcessor
from .coordinator import FORCED_EXIT_STATUS, BridgePipeline
from .processor import MessageProcessor

__all__ = [
    "AsyncMessageProcessor",
    "BridgePipeline",
    "FORCED_EXIT_STATUS",
    "MessageProcessor",
]
