"""CLI helpers for config and client construction."""

from __future__ import annotations

from cloudsqlite.config import CloudSQLiteConfig
from cloudsqlite.locks import LeaseLockManager, open_lock_store
from cloudsqlite.orchestrator import Orchestrator, build_orchestrator


def config_from_state() -> CloudSQLiteConfig:
    """Environment config with explicit CLI options layered on top."""
    from cloudsqlite.cli import state

    config = CloudSQLiteConfig.from_env()
    if state.snapshot_uri:
        config.snapshot_uri = state.snapshot_uri
    if state.lock_uri:
        config.lock_uri = state.lock_uri
    if state.lease_duration_s is not None:
        config.lease_duration_s = state.lease_duration_s
    return config


def open_orchestrator() -> Orchestrator:
    return build_orchestrator(config_from_state())


def open_lock_manager() -> LeaseLockManager:
    config = config_from_state()
    return LeaseLockManager(open_lock_store(config.lock_uri, config))
