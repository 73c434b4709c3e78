from __future__ import annotations
from dataclasses import dataclass

@dataclass
class TaskRunStats:
    scanned_orders: int = 0
    transitioned: int = 0
    unchanged: int = 0
    skipped: int = 0
    remote_calls: int = 0
    remote_failures: int = 0
    stale_samples: int = 0
    errors: int = 0
