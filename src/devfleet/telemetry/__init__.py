"""Telemetry domain: operational logging for devfleet invocations.

Structure:
    system/         System operational logs (stderr + system.jsonl)
"""

__all__: list[str] = []
