"""Untrusted-side components: the evaluator and its HTTP service."""
from blindmatch.server.compute import RemoteEvaluator
from blindmatch.server.api import app, create_app, run_server

__all__ = [
    "RemoteEvaluator",
    "app",
    "create_app",
    "run_server",
]
