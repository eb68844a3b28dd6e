"""
Top-level package for the lockup integration harness.

The scenario orchestration core lives under `lockup_harness.scenario_runner`;
the offline pool-update tooling lives under `lockup_harness.pool_admin`.
"""

__all__: list[str] = []
