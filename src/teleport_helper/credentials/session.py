"""AWS proxy sessions: launch, wait for credentials, export and sync."""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import MutableMapping, Optional

from ..exceptions import MissingTarget
from ..process import ProcessRunner, process_alive
from .exporter import CredentialExporter
from .models import CredentialSet, artifact_path
from .shell import ShellProfileSync
from .watcher import CredentialWatcher


logger = logging.getLogger(__name__)


@dataclass
class ProxySession:
    """A running ``tsh proxy aws`` and the credentials it produced.

    The proxy keeps running after this object goes away and serves shells
    that source the artifact until logout.
    """
    target: str
    role: str
    process: asyncio.subprocess.Process
    log_path: Path
    credentials: CredentialSet = field(default_factory=CredentialSet)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return process_alive(self.process)

    @classmethod
    async def open(
        cls,
        target: str,
        role: str,
        *,
        runner: Optional[ProcessRunner] = None,
        watcher: Optional[CredentialWatcher] = None,
        exporter: Optional[CredentialExporter] = None,
        profile: Optional[ShellProfileSync] = None,
        tsh_path: str = "tsh",
        temp_dir: Path = Path("/tmp"),
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> "ProxySession":
        """Start a proxy for ``target`` and export its credentials.

        Stages run strictly in order: launch, watch, export, profile sync.

        Args:
            target: Teleport AWS app (account) name
            role: AWS role already selected with ``tsh apps login``
            runner: Process runner used to launch the proxy
            watcher: Readiness watcher
            exporter: Artifact exporter
            profile: Shell profile to point at the artifact (skipped if None)
            tsh_path: tsh executable
            temp_dir: Directory for the log artifact
            environ: Mapping that also receives the credentials, if given

        Raises:
            MissingTarget: If ``target`` is empty
            LaunchFailure: If the proxy cannot be started
            CredentialTimeout: If credentials never appear (proxy left running)
            ArtifactMissing: If the artifact disappears before export
            ProfileIOFailure: If the profile cannot be updated
        """
        if not target:
            raise MissingTarget()

        runner = runner or ProcessRunner()
        watcher = watcher or CredentialWatcher()
        exporter = exporter or CredentialExporter()
        log_path = artifact_path(target, temp_dir)

        logger.info(f"Starting AWS proxy for {target} as {role}")
        process = await runner.run_background(
            tsh_path, ["proxy", "aws", "--app", target], log_path=log_path
        )
        session = cls(target=target, role=role, process=process, log_path=log_path)

        await watcher.watch(log_path, process=process)
        session.credentials = await exporter.export(log_path, target, role, environ=environ)

        if profile is not None:
            await profile.sync(log_path)

        return session

    def terminate(self) -> bool:
        """Stop the proxy now instead of waiting for logout.

        Returns:
            True if a signal was sent
        """
        if not self.alive:
            return False
        try:
            self.process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            return False
        logger.info(f"Terminated proxy {self.pid} for {self.target}")
        return True
