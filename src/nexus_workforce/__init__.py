"""
nexus-workforce: worker/agent orchestration engine.

Purpose
- Size a worker team from a workload profile, run its lifecycle, dispatch
  tasks FIFO-per-role, gate sensitive actions behind human decisions, and
  recover from invalid worker output with a bounded verification loop.

Import boundary
- Importing the package has no side effects (no config loading, no logging
  setup). Entry points call ``observability.logging.configure_logging``.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
