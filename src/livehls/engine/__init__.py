"""Session engine: process supervision, per-session event loops and the registry."""
from __future__ import annotations

from .process import PopenHandle, ProcessHandle, ProcessLauncher, SubprocessLauncher
from .reaper import IdleReaper
from .registry import SessionRegistry, SimulationInfo, StartResult
from .runtime import SessionRuntime
from .stop_strategy import StopResult, StopStrategy
from .supervisor import Marker, ProcessSupervisor

__all__ = [
    "IdleReaper",
    "Marker",
    "PopenHandle",
    "ProcessHandle",
    "ProcessLauncher",
    "ProcessSupervisor",
    "SessionRegistry",
    "SessionRuntime",
    "SimulationInfo",
    "StartResult",
    "StopResult",
    "StopStrategy",
    "SubprocessLauncher",
]
