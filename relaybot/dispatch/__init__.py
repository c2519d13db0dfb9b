from .queue import DispatchQueue, QueueClosedError

__all__ = ["DispatchQueue", "QueueClosedError"]
