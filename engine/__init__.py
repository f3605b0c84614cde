# PATH: engine/__init__.py
"""Engine supervisor: owns the running flag and every subsystem task."""

from engine.supervisor import EngineSupervisor

__all__ = ["EngineSupervisor"]
