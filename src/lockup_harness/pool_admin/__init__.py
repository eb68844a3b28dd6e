"""Offline pool update tooling for deployed lockup contracts."""

from .updater import PoolUpdateError, PoolUpdateResult, PoolUpdater

__all__ = ["PoolUpdateError", "PoolUpdateResult", "PoolUpdater"]
