"""Credential proxy lifecycle and shell environment synchronization."""

from .exporter import CredentialExporter, region_for
from .models import CredentialSet, READINESS_MARKER, artifact_path
from .reaper import ReapReport, SessionReaper
from .registry import (
    ProcessEntry,
    ProcessRegistry,
    PsProcessRegistry,
    PsutilProcessRegistry,
    create_registry
)
from .session import ProxySession
from .shell import ShellFamily, ShellProfileSync
from .watcher import CredentialWatcher

__all__ = [
    "CredentialExporter",
    "CredentialSet",
    "CredentialWatcher",
    "ProcessEntry",
    "ProcessRegistry",
    "ProxySession",
    "PsProcessRegistry",
    "PsutilProcessRegistry",
    "READINESS_MARKER",
    "ReapReport",
    "SessionReaper",
    "ShellFamily",
    "ShellProfileSync",
    "artifact_path",
    "create_registry",
    "region_for"
]
