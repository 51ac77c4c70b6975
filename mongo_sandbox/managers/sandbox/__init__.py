"""Sandbox manager."""

from mongo_sandbox.managers.sandbox.sandbox import ConnectionOptions, RunState, Sandbox

__all__ = ["ConnectionOptions", "RunState", "Sandbox"]
