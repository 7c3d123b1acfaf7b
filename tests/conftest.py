from __future__ import annotations

from hypothesis import HealthCheck, settings

# Ledger replays under Hypothesis can be slow on loaded CI machines
settings.register_profile(
    "bookkeeper_stable",
    suppress_health_check=[HealthCheck.too_slow],
    deadline=None,
)

settings.load_profile("bookkeeper_stable")
