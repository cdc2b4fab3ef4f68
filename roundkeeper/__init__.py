"""Round tracking and checkpointed round completion."""

__version__ = "0.1.0"
