"""Thin wrapper around the ``tsh`` command."""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from .config import Config
from .exceptions import AuthFailure, ThError
from .process import ProcessRunner


logger = logging.getLogger(__name__)


@dataclass
class TeleportStatus:
    """Parsed ``tsh status`` output."""
    logged_in: bool
    user: Optional[str] = None
    cluster: Optional[str] = None
    expires: Optional[str] = None


@dataclass
class AwsRoles:
    """Roles offered for an AWS app."""
    roles: List[str]
    default: Optional[str] = None


@dataclass
class AwsApp:
    """A Teleport application fronting an AWS account."""
    name: str
    description: Optional[str] = None
    uri: str = ""


def _extract_field(text: str, field: str) -> Optional[str]:
    for line in text.splitlines():
        if field in line:
            return line.split(field, 1)[1].strip() or None
    return None


def parse_status(text: str) -> TeleportStatus:
    """Parse the text printed by ``tsh status``."""
    if "Logged in as:" not in text:
        return TeleportStatus(logged_in=False)
    return TeleportStatus(
        logged_in=True,
        user=_extract_field(text, "Logged in as:"),
        cluster=_extract_field(text, "Cluster:") or _extract_field(text, "Proxy:"),
        expires=_extract_field(text, "Valid until:") or _extract_field(text, "Expires:"),
    )


ROLES_HEADER = "Available AWS roles:"
ROLE_REQUIRED_ERROR = "ERROR: --aws-role flag is required"
ROLE_ARN_PREFIX = "arn:aws:iam::"


def parse_aws_roles(text: str) -> List[str]:
    """Extract role names from the table ``tsh apps login <app>`` prints
    when no ``--aws-role`` is given.

    The table starts at ``Available AWS roles:`` followed by a column
    header and a dashed separator; the first column holds the role name.
    """
    section = []
    in_section = False
    for line in text.splitlines():
        if ROLES_HEADER in line:
            in_section = True
            continue
        if ROLE_REQUIRED_ERROR in line:
            break
        if in_section and "ERROR:" not in line:
            section.append(line)

    roles = []
    for line in section[1:]:
        fields = line.split()
        if not fields or set(fields[0]) == {"-"}:
            continue
        roles.append(fields[0])
    return roles


def parse_default_role(text: str) -> Optional[str]:
    """Role name from the first IAM role ARN in tsh output, if any."""
    for line in text.splitlines():
        start = line.find(ROLE_ARN_PREFIX)
        if start == -1:
            continue
        arn = line[start:].split()[0]
        return arn.rsplit("/", 1)[-1] or None
    return None


def parse_request_id(text: str) -> Optional[str]:
    """Access request id from ``tsh request create`` output."""
    for line in text.splitlines():
        if "Request ID:" in line:
            fields = line.split()
            if len(fields) >= 3:
                return fields[2]
    return None


def elevated_role_for(app: str) -> str:
    """Role to request when an account offers only its default role."""
    return "sudo_prod_role" if app == "yl-production" else "sudo_usprod_role"


def resolve_role(env: str, sudo: bool = False) -> str:
    """Map a short environment name to the AWS role used for quick login."""
    role = {"dev": "dev", "corepg": "coreplayground"}.get(env, env)
    return f"sudo_{role}" if sudo else role


class TeleportClient:
    """Runs tsh subcommands used by the command handlers."""

    def __init__(
        self,
        config: Config,
        runner: Optional[ProcessRunner] = None,
        tsh_path: str = "tsh",
        poll_interval: float = 0.5,
    ):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.tsh = tsh_path
        self.poll_interval = poll_interval

    async def status(self) -> TeleportStatus:
        """Get current Teleport status. Errors count as logged out."""
        try:
            output = await self.runner.run_with_output(self.tsh, ["status"], timeout=10)
        except ThError as e:
            logger.warning(f"Could not check Teleport status: {e}")
            return TeleportStatus(logged_in=False)
        return parse_status(output.stdout)

    async def is_logged_in(self) -> bool:
        return (await self.status()).logged_in

    async def login(self) -> bool:
        """Log in to Teleport unless a session already exists.

        Returns:
            True if a new login was performed

        Raises:
            AuthFailure: If login fails or does not complete in time
        """
        if await self.is_logged_in():
            return False

        args = [
            "login",
            "--auth", self.config.teleport.auth_type,
            "--proxy", self.config.teleport.proxy,
        ]
        try:
            await self.runner.run_interactive(self.tsh, args)
        except ThError as e:
            raise AuthFailure(f"Teleport login failed: {e}") from e

        attempts = max(1, int(self.config.teleport.timeout_seconds / self.poll_interval))
        for _ in range(attempts):
            if await self.is_logged_in():
                return True
            await asyncio.sleep(self.poll_interval)

        raise AuthFailure("Timed out waiting for Teleport login")

    async def logout(self) -> bool:
        return await self.runner.run_silent(self.tsh, ["logout"], timeout=15)

    async def aws_login(self, app: str, role: str) -> None:
        """Log in to an AWS app with a specific role."""
        await self.runner.run(self.tsh, ["apps", "login", app, "--aws-role", role], timeout=30)

    async def aws_logout(self) -> bool:
        return await self.runner.run_silent(self.tsh, ["apps", "logout"], timeout=15)

    async def discover_roles(self, app: str) -> AwsRoles:
        """Ask tsh which roles ``app`` offers.

        Logging in without ``--aws-role`` makes tsh fail and print the role
        table, so the exit status is ignored and both streams are parsed.
        """
        output = await self.runner.run_with_output(self.tsh, ["apps", "login", app], timeout=30)
        text = output.stdout + output.stderr
        roles = AwsRoles(roles=parse_aws_roles(text), default=parse_default_role(text))
        logger.debug(f"Roles for {app}: {roles.roles} (default {roles.default})")
        return roles

    async def request_privilege(self, role: str, reason: str) -> str:
        """Raise an access request for ``role``.

        Returns:
            The request id

        Raises:
            AuthFailure: If tsh does not report a request id
        """
        output = await self.runner.run_with_output(
            self.tsh, ["request", "create", "--roles", role, "--reason", reason], timeout=60
        )
        request_id = parse_request_id(output.stdout)
        if request_id is None:
            detail = output.stderr.strip() or output.stdout.strip() or f"exit code {output.returncode}"
            raise AuthFailure(f"Failed to extract request ID from output: {detail}")
        logger.info(f"Access request {request_id} created for {role}")
        return request_id

    async def login_with_request(self, request_id: str) -> None:
        """Log in again so the session carries an access request's roles."""
        await self.logout()
        args = [
            "login",
            f"--auth={self.config.teleport.auth_type}",
            f"--proxy={self.config.teleport.proxy}",
            f"--request-id={request_id}",
        ]
        try:
            await self.runner.run_interactive(self.tsh, args)
        except ThError as e:
            raise AuthFailure(f"Re-authentication with request {request_id} failed: {e}") from e

    async def list_aws_apps(self) -> List[AwsApp]:
        """List AWS applications visible to the current user."""
        items = await self.runner.run_json(self.tsh, ["apps", "ls", "--format=json"], timeout=30)

        apps = []
        for item in items or []:
            metadata = item.get("metadata") or {}
            name = metadata.get("name")
            if not name:
                continue
            apps.append(AwsApp(
                name=name,
                description=metadata.get("description"),
                uri=(item.get("spec") or {}).get("uri", ""),
            ))
        return apps
