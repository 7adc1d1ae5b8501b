from screener.processors.base import VectorProcessor
from screener.processors.redis import RedisMirrorProcessor

__all__ = ["RedisMirrorProcessor", "VectorProcessor"]
