"""Shared utilities: logging and async primitives"""
from ccsolver.utils.logger import get_logger, setup_logging
from ccsolver.utils.rwlock import AsyncRWLock

__all__ = ["get_logger", "setup_logging", "AsyncRWLock"]
