"""
defib - Container & Host Defibrillator

Periodic health monitor that checks container health endpoints, runaway
processes and memory pressure, then applies bounded, policy-gated fixes
(restart, kill, alert).

Each invocation is independent: state is loaded at start and persisted at
the end. Scheduling (cron, systemd timers) is left to the host.
"""

__version__ = "0.4.0"
