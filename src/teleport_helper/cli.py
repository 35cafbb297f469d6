"""Command-line interface for the Teleport helper."""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import click
from dotenv import load_dotenv
from rich.console import Console

from .config import CONFIG_TEMPLATE, Config, Settings, load_config
from .credentials.identity import verify_credentials
from .credentials.reaper import SessionReaper, is_proxy_command
from .credentials.registry import create_registry
from .credentials.session import ProxySession
from .credentials.shell import ShellProfileSync
from .credentials.watcher import CredentialWatcher
from .exceptions import ThError
from .process import ProcessRunner
from .teleport import TeleportClient, elevated_role_for, resolve_role


logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


class AppContext:
    """Objects shared by every subcommand."""

    def __init__(self, config: Config, settings: Settings):
        self.config = config
        self.settings = settings
        self.runner = ProcessRunner()
        self.client = TeleportClient(
            config,
            runner=self.runner,
            tsh_path=settings.tsh_path,
            poll_interval=settings.poll_interval,
        )

    def profile(self) -> ShellProfileSync:
        return ShellProfileSync.for_environment(temp_dir=self.settings.temp_dir)

    def watcher(self) -> CredentialWatcher:
        return CredentialWatcher(
            interval=self.settings.poll_interval,
            max_attempts=self.settings.poll_attempts,
        )


def _fail(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


async def _ensure_login(app: AppContext) -> None:
    with console.status("Checking Teleport login..."):
        logged_in = await app.client.is_logged_in()
    if logged_in:
        console.print("Already logged in to Teleport.")
        return
    console.print("Logging you into Teleport...")
    await app.client.login()
    console.print("[bold green]Logged in successfully![/bold green]")


async def _create_proxy(app: AppContext, account: str, role: str, verify: bool, shell: bool) -> None:
    console.print(f"Logging you into [bold green]{account}[/bold green] as [bold green]{role}[/bold green]")
    await app.client.aws_logout()
    await app.client.aws_login(account, role)

    with console.status(f"Starting AWS proxy for {account}..."):
        session = await ProxySession.open(
            account,
            role,
            runner=app.runner,
            watcher=app.watcher(),
            profile=app.profile(),
            tsh_path=app.settings.tsh_path,
            temp_dir=app.settings.temp_dir,
        )

    console.print(
        f"Credentials exported, and made global, for app: [bold green]{account}[/bold green] "
        f"(proxy pid {session.pid})"
    )
    console.print(f"New shells source [bold]{session.log_path}[/bold]")

    if verify:
        try:
            identity = await verify_credentials(session.credentials)
        except Exception as e:
            logger.error(f"Credential validation failed: {e}")
            err_console.print(f"[yellow]Could not verify credentials: {e}[/yellow]")
        else:
            console.print(f"  Account ID: {identity['account_id']}")
            console.print(f"  ARN: {identity['arn']}")

    if shell:
        user_shell = os.environ.get("SHELL", "/bin/sh")
        await app.runner.run_interactive(user_shell, env=session.credentials.as_env(os.environ))


def _choose(title: str, items: List[str], prompt: str) -> str:
    console.print(f"[bold]{title}[/bold]")
    for number, item in enumerate(items, start=1):
        console.print(f"  {number}. {item}")
    choice = click.prompt(prompt, type=click.IntRange(1, len(items)))
    return items[choice - 1]


async def _interactive_login(app: AppContext, verify: bool, shell: bool) -> None:
    with console.status("Fetching AWS applications..."):
        apps = await app.client.list_aws_apps()
    if not apps:
        raise ThError("No AWS applications available")

    account = _choose("Available accounts", [a.name for a in apps], "Select account (number)")
    console.print(f"Connecting to AWS account: [bold]{account}[/bold]")

    await app.client.aws_logout()
    offered = await app.client.discover_roles(account)

    if offered.roles:
        role = _choose("Available roles", offered.roles, "Select role (number)")
        await _create_proxy(app, account, role, verify, shell)
    elif offered.default:
        await _elevated_login(app, account, offered.default, verify, shell)
    else:
        raise ThError(f"No AWS roles available for {account}")


async def _elevated_login(app: AppContext, account: str, default_role: str, verify: bool, shell: bool) -> None:
    console.print(f"No privileged roles found. Your only available role is: [bold green]{default_role}[/bold green]")
    console.print(f"[dim]Answering no logs you in as {default_role}.[/dim]")

    if not click.confirm("Would you like to raise a privilege request?"):
        await _create_proxy(app, account, default_role, verify, shell)
        return

    reason = click.prompt("Enter request reason")
    request_id = await app.client.request_privilege(elevated_role_for(account), reason)
    console.print(f"[bold green]Access request sent![/bold green] (request {request_id})")

    console.print("[bold]Re-authenticating[/bold]")
    await app.client.login_with_request(request_id)
    console.print("Re-authentication complete. Run the command again to use elevated permissions.")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ThError as e:
        logger.debug("Command failed", exc_info=True)
        _fail(str(e))


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--config', '-c', type=Path, default=None, help='Config file path')
@click.pass_context
def main(ctx: click.Context, debug: bool, config: Optional[Path]):
    """th - Teleport helper for AWS credentials and proxies."""
    load_dotenv()
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        ctx.obj = AppContext(load_config(config), Settings())
    except ThError as e:
        _fail(str(e))


@main.command()
@click.pass_obj
def login(app: AppContext):
    """Log in to Teleport."""
    _run(_ensure_login(app))


@main.command()
@click.argument('env', required=False)
@click.argument('sudo_flag', required=False)
@click.option('--verify', is_flag=True, help='Check the credentials with STS after export')
@click.option('--shell', 'open_shell', is_flag=True, help='Open a shell with the credentials set')
@click.pass_obj
def aws(app: AppContext, env: Optional[str], sudo_flag: Optional[str], verify: bool, open_shell: bool):
    """Log in to an AWS account and export its credentials.

    ENV is a short name such as dev or prod; pass "s" as SUDO_FLAG to use
    the account's sudo role. Without ENV, pick the account and role from
    menus.
    """
    async def _aws():
        await _ensure_login(app)

        if not env:
            await _interactive_login(app, verify, open_shell)
            return

        account = app.config.get_aws_account(env)
        if account is None:
            known = ", ".join(app.config.list_aws_envs())
            raise ThError(f"Environment '{env}' not found in configuration (known: {known})")

        role = resolve_role(env, sudo=sudo_flag == "s")
        await _create_proxy(app, account, role, verify, open_shell)

    _run(_aws())


@main.command()
@click.option('--verify', is_flag=True, help='Check the credentials with STS after export')
@click.pass_obj
def terra(app: AppContext, verify: bool):
    """Log in to yl-admin as sudo_admin for Terraform/Terragrunt."""
    async def _terra():
        await _ensure_login(app)
        await _create_proxy(app, "yl-admin", "sudo_admin", verify, shell=False)

    _run(_terra())


@main.command()
@click.pass_obj
def logout(app: AppContext):
    """Log out of all proxies, accounts and clusters."""
    reaper = SessionReaper(
        registry=create_registry(app.settings.process_backend, app.runner),
        profile=app.profile(),
        runner=app.runner,
        temp_dir=app.settings.temp_dir,
        tsh_path=app.settings.tsh_path,
        environ=os.environ,
    )

    console.print("[bold]Cleaning up Teleport session...[/bold]")
    report = asyncio.run(reaper.reap())

    console.print(f"Removed {len(report.removed_files)} credential file(s)")
    console.print(f"Removed {report.profile_lines_removed} line(s) from {reaper.profile.profile_path}")
    if report.killed_pids:
        console.print(f"Killed proxies: {', '.join(str(pid) for pid in report.killed_pids)}")
    if not report.ok:
        err_console.print(f"[yellow]{report.as_error()}[/yellow]")
    console.print("[bold green]Logged out of all apps, clusters & proxies[/bold green]")


@main.command()
@click.pass_obj
def status(app: AppContext):
    """Show Teleport login, exported profile and running proxies."""
    async def _status():
        teleport_status = await app.client.status()
        if teleport_status.logged_in:
            console.print(f"Logged in as [bold]{teleport_status.user}[/bold] ({teleport_status.cluster})")
            if teleport_status.expires:
                console.print(f"  Valid until: {teleport_status.expires}")
        else:
            console.print("Not logged in to Teleport")

        profile = app.profile()
        lines = profile.source_lines()
        console.print(f"Profile {profile.profile_path}: {len(lines)} credential source line(s)")
        for number, text in lines:
            console.print(f"  {number}: {text}")

        registry = create_registry(app.settings.process_backend, app.runner)
        proxies = await registry.match(is_proxy_command)
        console.print(f"Running proxies: {len(proxies)}")
        for entry in proxies:
            console.print(f"  {entry.pid}: {entry.command}")

    _run(_status())


@main.command()
def config_template():
    """Print a config file template."""
    click.echo(CONFIG_TEMPLATE)


if __name__ == "__main__":
    main()
