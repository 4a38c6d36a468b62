"""Pure frozen dataclasses with zero I/O.

The models layer has no dependencies on any other chainsync package, only
the Python standard library. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``.

Attributes:
    Block: A chain block with its raw node payload.
    BlockDbParams: Row parameters for the ``block`` table.
    ServiceName: Service identifiers.
    QueueName: ``job_queue`` topics.
"""

from .block import Block, BlockDbParams
from .constants import QueueName, ServiceName


__all__ = [
    "Block",
    "BlockDbParams",
    "QueueName",
    "ServiceName",
]
