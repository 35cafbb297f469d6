"""Teleport helper - short-lived AWS credentials via tsh, exported to your shell."""

__version__ = "0.1.0"

from .credentials.models import CredentialSet
from .credentials.reaper import SessionReaper
from .credentials.session import ProxySession
from .process import ProcessRunner

__all__ = ["CredentialSet", "ProcessRunner", "ProxySession", "SessionReaper"]
