"""Monitors: container health, processes, system pressure."""

from defib.monitors.container import ContainerMonitor
from defib.monitors.processes import ProcessMonitor
from defib.monitors.system import SystemMonitor

__all__ = ["ContainerMonitor", "ProcessMonitor", "SystemMonitor"]
