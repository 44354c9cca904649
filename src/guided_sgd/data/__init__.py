"""Mini-batch data dispatchers."""

from guided_sgd.data.dispatcher import ArrayDispatcher, DataDispatcher, EndOfEpoch

__all__ = [
    "ArrayDispatcher",
    "DataDispatcher",
    "EndOfEpoch",
]
