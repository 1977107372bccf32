from __future__ import annotations

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
import typer
from typer.core import TyperGroup

from pocket_ipam.cli.tables import (
    format_discoveries,
    format_hosts,
    format_record,
    format_search_results,
    format_subnets,
)
from pocket_ipam.core.config import APP_NAME, APP_VERSION, DATADIR_ENV, DB_FILENAME, Settings
from pocket_ipam.core.errors import IpamError, ValidationError
from pocket_ipam.core.models import Host, Subnet
from pocket_ipam.core.network import METHOD_ICMP, ping_sweep
from pocket_ipam.core.storage import IpamStore
from pocket_ipam.utils.logging import configure_logging, get_logger


class IpamGroup(TyperGroup):
    """Root command group that prints usage errors on stdout.

    Click reports a missing option, an unknown command and similar mistakes on
    stderr. Here they go to stdout with exit code 2, and an interrupted command
    exits with 130.
    """

    def main(self, *args, standalone_mode: bool = True, **kwargs):
        if not standalone_mode:
            return super().main(*args, standalone_mode=False, **kwargs)
        try:
            rv = super().main(*args, standalone_mode=False, **kwargs)
        except click.UsageError as exc:
            exc.show(file=sys.stdout)
            sys.exit(exc.exit_code)
        except click.ClickException as exc:
            exc.show()
            sys.exit(exc.exit_code)
        except click.Abort as exc:
            if isinstance(exc.__cause__, KeyboardInterrupt):
                typer.echo("Interrupted by user.", err=True)
                sys.exit(130)
            typer.echo("Aborted!", err=True)
            sys.exit(1)
        # click returns the code of typer.Exit instead of exiting when not standalone
        sys.exit(rv if isinstance(rv, int) else 0)


EPILOG = (
    "--parent accepts a subnet ID, name or CIDR, e.g. --parent ABC123, "
    "--parent home-network or --parent 192.168.1.0/24."
)

app = typer.Typer(
    cls=IpamGroup,
    help="Lightweight IP address management: subnets, hosts and ping discoveries.",
    epilog=EPILOG,
    no_args_is_help=True,
    add_completion=False,
)
add_app = typer.Typer(help="Add a subnet or host.", no_args_is_help=True)
list_app = typer.Typer(help="List subnets, hosts or discoveries.", no_args_is_help=True)
show_app = typer.Typer(help="Show a single subnet or host.", no_args_is_help=True)
delete_app = typer.Typer(help="Delete a subnet or host by ID.", no_args_is_help=True)
edit_app = typer.Typer(help="Edit a subnet or host by ID.", no_args_is_help=True)
ping_app = typer.Typer(help="Ping-sweep a subnet and record what answers.", no_args_is_help=True)

app.add_typer(add_app, name="add")
app.add_typer(list_app, name="list")
app.add_typer(show_app, name="show")
app.add_typer(delete_app, name="delete")
app.add_typer(edit_app, name="edit")
app.add_typer(ping_app, name="ping")

log = get_logger(__name__)


@contextmanager
def _reporting_errors() -> Iterator[None]:
    try:
        yield
    except IpamError as exc:
        log.debug("command failed", exc_info=True)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _settings(ctx: typer.Context) -> Settings:
    return ctx.find_root().obj


def _store(ctx: typer.Context) -> IpamStore:
    return IpamStore(_settings(ctx).db_path)


def _subnet_summary(subnet: Subnet, title: str) -> str:
    return format_record(
        title,
        [
            ("ID", subnet.id),
            ("CIDR", subnet.cidr),
            ("Name", subnet.name),
            ("Parent", subnet.parent_id),
            ("Comment", subnet.comment),
            ("Created", subnet.created_at),
        ],
    )


def _host_summary(host: Host, title: str) -> str:
    return format_record(
        title,
        [
            ("ID", host.id),
            ("Address", host.address),
            ("Name", host.name),
            ("Parent", host.parent_id),
            ("Comment", host.comment),
            ("Created", host.created_at),
            ("Last Seen", host.last_seen),
        ],
    )


@app.callback()
def main_callback(
        ctx: typer.Context,
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug details to stderr."),
):
    with _reporting_errors():
        settings = Settings.from_env()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)
    ctx.obj = settings


@app.command()
def init(
        ctx: typer.Context,
        data_dir: Optional[Path] = typer.Option(
            None,
            "--data-dir",
            help="Directory for the database file (prompted for when omitted).",
        ),
):
    """Create the database, or upgrade an existing one in place."""
    settings = _settings(ctx)
    if data_dir is None:
        answer = typer.prompt("Database directory", default=str(settings.data_dir))
        data_dir = Path(answer)
    data_dir = data_dir.expanduser()
    db_path = data_dir / DB_FILENAME

    typer.echo(f"Initializing database at: {db_path}")
    with _reporting_errors():
        IpamStore(db_path).init_db()

    if data_dir.resolve() != settings.data_dir.expanduser().resolve():
        typer.echo("Note: to use this location in the future, set the environment variable:")
        typer.echo(f"   {DATADIR_ENV}={data_dir}")
    typer.echo("Database initialized successfully!")
    typer.echo(f"Database file: {db_path}")


@app.command()
def version():
    """Show version information."""
    typer.echo(f"{APP_NAME} v{APP_VERSION}")


@app.command(name="help")
def show_help(ctx: typer.Context):
    """Show this help message."""
    typer.echo(ctx.find_root().get_help())


# -- add -------------------------------------------------------------------


@add_app.command("subnet")
def add_subnet(
        ctx: typer.Context,
        cidr: str = typer.Option(..., "--cidr", help="Network block, e.g. 192.168.1.0/24."),
        name: str = typer.Option("", "--name", help="Optional label; need not be unique."),
        parent: str = typer.Option("", "--parent", help="Parent subnet ID, name or CIDR."),
        comment: str = typer.Option("", "--comment", help="Free-text comment."),
):
    """Register a subnet."""
    with _reporting_errors():
        subnet = _store(ctx).add_subnet(cidr, name=name, parent_ref=parent, comment=comment)
    typer.echo(_subnet_summary(subnet, "Subnet added successfully!"), nl=False)


@add_app.command("host")
def add_host(
        ctx: typer.Context,
        address: str = typer.Option(..., "--address", help="Host address, e.g. 192.168.1.10."),
        name: str = typer.Option("", "--name", help="Optional label."),
        parent: str = typer.Option("", "--parent", help="Parent subnet ID, name or CIDR."),
        comment: str = typer.Option("", "--comment", help="Free-text comment."),
):
    """Register a host."""
    with _reporting_errors():
        host = _store(ctx).add_host(address, name=name, parent_ref=parent, comment=comment)
    typer.echo(_host_summary(host, "Host added successfully!"), nl=False)


# -- list / show -----------------------------------------------------------


@list_app.command("subnets")
def list_subnets(ctx: typer.Context):
    """List all subnets."""
    with _reporting_errors():
        store = _store(ctx)
        output = format_subnets(store.list_subnets(), store.subnet_labels())
    typer.echo(output, nl=False)


@list_app.command("hosts")
def list_hosts(
        ctx: typer.Context,
        parent: str = typer.Option("", "--parent", help="Only hosts under this subnet (ID, name or CIDR)."),
):
    """List hosts, optionally only those under one subnet."""
    with _reporting_errors():
        store = _store(ctx)
        parent_id = store.resolve_parent_reference(parent)
        output = format_hosts(store.list_hosts(parent_id), store.subnet_labels())
    typer.echo(output, nl=False)


@list_app.command("discoveries")
def list_discoveries(
        ctx: typer.Context,
        subnet: str = typer.Option("", "--subnet", help="Only discoveries in this subnet (ID, name or CIDR)."),
):
    """List addresses found by ping sweeps."""
    with _reporting_errors():
        store = _store(ctx)
        subnet_id = store.resolve_parent_reference(subnet)
        output = format_discoveries(store.list_discoveries(subnet_id), store.subnet_labels())
    typer.echo(output, nl=False)


@show_app.command("subnet")
def show_subnet(ctx: typer.Context, subnet_id: str = typer.Argument(..., metavar="ID")):
    """Show one subnet and the hosts directly under it."""
    with _reporting_errors():
        store = _store(ctx)
        subnet = store.get_subnet(subnet_id)
        hosts = store.list_hosts(subnet.id)
        labels = store.subnet_labels()
    typer.echo(_subnet_summary(subnet, f"Subnet {subnet.id}"))
    typer.echo(format_hosts(hosts, labels), nl=False)


@show_app.command("host")
def show_host(ctx: typer.Context, host_id: str = typer.Argument(..., metavar="ID")):
    """Show one host."""
    with _reporting_errors():
        host = _store(ctx).get_host(host_id)
    typer.echo(_host_summary(host, f"Host {host.id}"), nl=False)


# -- delete / edit ---------------------------------------------------------


@delete_app.command("subnet")
def delete_subnet(ctx: typer.Context, subnet_id: str = typer.Argument(..., metavar="ID")):
    """Delete a subnet. Hosts and child subnets keep their parent ID."""
    with _reporting_errors():
        _store(ctx).delete_subnet(subnet_id)
    typer.echo(f"Subnet {subnet_id} deleted.")


@delete_app.command("host")
def delete_host(ctx: typer.Context, host_id: str = typer.Argument(..., metavar="ID")):
    """Delete a host."""
    with _reporting_errors():
        _store(ctx).delete_host(host_id)
    typer.echo(f"Host {host_id} deleted.")


@edit_app.command("subnet")
def edit_subnet(
        ctx: typer.Context,
        subnet_id: str = typer.Argument(..., metavar="ID"),
        cidr: Optional[str] = typer.Option(None, "--cidr", help="New network block."),
        name: Optional[str] = typer.Option(None, "--name", help="New name."),
        parent: Optional[str] = typer.Option(
            None, "--parent", help='New parent subnet (ID, name or CIDR); "" makes it top-level.'
        ),
        comment: Optional[str] = typer.Option(None, "--comment", help="New comment."),
):
    """Change fields of a subnet; omitted options are left as they are."""
    with _reporting_errors():
        if cidr is None and name is None and parent is None and comment is None:
            raise ValidationError("nothing to change; pass at least one of --cidr, --name, --parent, --comment")
        subnet = _store(ctx).update_subnet(subnet_id, cidr=cidr, name=name, parent_ref=parent, comment=comment)
    typer.echo(_subnet_summary(subnet, "Subnet updated successfully!"), nl=False)


@edit_app.command("host")
def edit_host(
        ctx: typer.Context,
        host_id: str = typer.Argument(..., metavar="ID"),
        address: Optional[str] = typer.Option(None, "--address", help="New address."),
        name: Optional[str] = typer.Option(None, "--name", help="New name."),
        parent: Optional[str] = typer.Option(
            None, "--parent", help='New parent subnet (ID, name or CIDR); "" detaches the host.'
        ),
        comment: Optional[str] = typer.Option(None, "--comment", help="New comment."),
):
    """Change fields of a host; omitted options are left as they are."""
    with _reporting_errors():
        if address is None and name is None and parent is None and comment is None:
            raise ValidationError("nothing to change; pass at least one of --address, --name, --parent, --comment")
        host = _store(ctx).update_host(host_id, address=address, name=name, parent_ref=parent, comment=comment)
    typer.echo(_host_summary(host, "Host updated successfully!"), nl=False)


# -- ping / search ---------------------------------------------------------


@ping_app.command("subnet")
def ping_subnet(
        ctx: typer.Context,
        target: str = typer.Argument(..., help="Subnet ID, name or CIDR."),
        method: str = typer.Option(METHOD_ICMP, "--method", "-m", help="icmp (ping command) | arp (LAN, needs root)."),
        timeout: Optional[int] = typer.Option(None, "--timeout", min=1, help="Seconds to wait per probe."),
        workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Parallel ICMP probes."),
):
    """Probe every usable address of a subnet and record the ones that answer."""
    settings = _settings(ctx)
    with _reporting_errors():
        store = _store(ctx)
        subnet_id = store.resolve_parent_reference(target)
        if subnet_id is None:
            raise ValidationError("a subnet reference is required")
        subnet = store.get_subnet(subnet_id)
        typer.echo(f"Pinging subnet {subnet.cidr} ({subnet.id})...")
        results = ping_sweep(
            subnet.cidr,
            method=method,
            timeout=timeout or settings.ping_timeout,
            workers=workers or settings.ping_workers,
            limit=settings.max_sweep_hosts,
            iface=settings.iface,
        )
        discoveries = store.record_discoveries(subnet.id, results)
        labels = store.subnet_labels()

    alive = sum(1 for result in results if result.alive)
    typer.echo(format_discoveries(discoveries, labels), nl=False)
    typer.echo(f"{alive} of {len(results)} addresses answered.")


@app.command()
def search(
        ctx: typer.Context,
        query: str = typer.Argument(..., help="Substring to look for (case-sensitive)."),
):
    """Search subnets, hosts and discoveries by substring."""
    with _reporting_errors():
        results = _store(ctx).search(query)
    typer.echo(format_search_results(results), nl=False)


def main() -> None:
    """Entry point for console_scripts."""
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Interrupted by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
