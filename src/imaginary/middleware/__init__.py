"""Request/response middleware and the pipeline that chains them."""

from .auth import APIKeyMiddleware
from .base import Middleware, MiddlewarePipeline, NextHandler
from .cache import CacheControlMiddleware, cache_control_value
from .compression import CompressionMiddleware
from .cors import CORSConfig, CORSMiddleware
from .logging import LoggingMiddleware, RequestLog
from .throttle import ThrottleMiddleware

__all__ = [
    "APIKeyMiddleware",
    "CacheControlMiddleware",
    "CompressionMiddleware",
    "CORSConfig",
    "CORSMiddleware",
    "LoggingMiddleware",
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "RequestLog",
    "ThrottleMiddleware",
    "cache_control_value",
]
