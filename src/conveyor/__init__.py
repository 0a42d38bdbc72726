"""
Conveyor: resumable rolling batch pipelines for bulk media migration.

Drives large item lists through multi-step remote pipelines with a fixed
concurrency window, per-item deadlines, shared credential refresh, and an
append-only ledger that makes reruns safe.
"""

__version__ = "0.1.0"
