# src/lasvpe/core/__init__.py
"""Core infrastructure: configuration, logging, resources, reference transports, planner."""

from lasvpe.core.blob_store import FilesystemBlobStore
from lasvpe.core.bus import InMemoryBus, InMemorySubscription
from lasvpe.core.config import (
    BlobStoreSettings,
    BusSettings,
    LasVpeSettings,
    LoggingSettings,
    RetrySettings,
    WorkerSettings,
    load_settings,
)
from lasvpe.core.logging import configure_logging, configure_logging_from_settings, get_logger, task_context
from lasvpe.core.planner import Parameter, Planner, Ports, build_topology, command_envelope, parse_command
from lasvpe.core.resources import BroadcastHandle, BroadcastPool, ResourceRegistry, Singleton, default_registry

__all__ = [
    "BlobStoreSettings",
    "BroadcastHandle",
    "BroadcastPool",
    "BusSettings",
    "FilesystemBlobStore",
    "InMemoryBus",
    "InMemorySubscription",
    "LasVpeSettings",
    "LoggingSettings",
    "Parameter",
    "Planner",
    "Ports",
    "ResourceRegistry",
    "RetrySettings",
    "Singleton",
    "WorkerSettings",
    "build_topology",
    "command_envelope",
    "configure_logging",
    "configure_logging_from_settings",
    "default_registry",
    "get_logger",
    "load_settings",
    "parse_command",
    "task_context",
]
