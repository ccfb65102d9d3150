"""Identity, port allocation, templating and drift reconciliation.

- ports.py: deterministic and sequential port allocation
- names.py: deterministic server names
- templates.py: {{...}} placeholder rendering
- drift.py: config snapshots and drift detection
- reconciler.py: start/reuse/restart/refresh decisions
"""

from .drift import DriftedValue, DriftResult, detect_drift
from .names import generate_deterministic_name
from .ports import PortAllocator, PortAssignment, SequentialPortLedger, fnv1a_32
from .reconciler import DriftReconciler, RefreshOutcome, StartRequest, StartResult
from .templates import TemplateContext, render_template

__all__ = [
    "DriftReconciler",
    "DriftResult",
    "DriftedValue",
    "PortAllocator",
    "PortAssignment",
    "RefreshOutcome",
    "SequentialPortLedger",
    "StartRequest",
    "StartResult",
    "TemplateContext",
    "detect_drift",
    "fnv1a_32",
    "generate_deterministic_name",
    "render_template",
]
