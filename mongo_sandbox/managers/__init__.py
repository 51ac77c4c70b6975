"""Manager layer - lifecycle policy."""

from mongo_sandbox.managers.sandbox import ConnectionOptions, RunState, Sandbox

__all__ = ["ConnectionOptions", "RunState", "Sandbox"]
