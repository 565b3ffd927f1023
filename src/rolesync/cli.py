"""Command-line interface for rolesync."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

import click

from .audit import DEFAULT_SAMPLE_SIZE, AuditReporter, SnsAuditSink
from .config import Settings, load_catalog
from .directory import DiscordDirectory
from .exceptions import ConfigError, RecordNotFoundError, RoleSyncError
from .reconciler import Reconciler
from .service import SyncService
from .store import RecordStore
from .stream import StreamReader

F = TypeVar("F", bound=Callable[..., Any])


def settings_options(func: F) -> F:
    """Options shared by every command that talks to Discord and DynamoDB."""
    options = [
        click.option("--discord-token", envvar="DISCORD_TOKEN", help="Discord bot token"),
        click.option("--guild-id", envvar="GUILD_ID", help="Discord guild id"),
        click.option("--table-name", envvar="TABLE_NAME", help="DynamoDB players table"),
        click.option(
            "--stream-arn",
            envvar="STREAM_ARN",
            help="DynamoDB stream ARN (default: the table's latest stream)",
        ),
        click.option(
            "--region",
            envvar=["AWS_REGION", "AWS_DEFAULT_REGION"],
            help="AWS region (default: boto3 defaults)",
        ),
        click.option(
            "--endpoint-url",
            envvar="AWS_ENDPOINT_URL",
            help="AWS endpoint URL (e.g., http://localhost:4566 for LocalStack)",
        ),
        click.option(
            "--catalog",
            "catalog_path",
            envvar="CATALOG_PATH",
            type=click.Path(dir_okay=False, path_type=Path),
            help="YAML catalog of managed roles (default: tier roles 1-4)",
        ),
        click.option(
            "--audit-topic-arn",
            envvar="AUDIT_TOPIC_ARN",
            help="SNS topic for audit reports (default: log only)",
        ),
        click.option(
            "--debounce-ms",
            envvar="DEBOUNCE_MS",
            type=click.IntRange(0, 60_000),
            default=500,
            show_default=True,
            help="Per-member debounce window in milliseconds",
        ),
        click.option(
            "--audit-interval",
            envvar="AUDIT_INTERVAL_SECONDS",
            type=click.IntRange(1, 86_400),
            default=300,
            show_default=True,
            help="Seconds between unlinked-record audits",
        ),
        click.option(
            "--audit-sample-size",
            envvar="AUDIT_SAMPLE_SIZE",
            type=click.IntRange(min=1),
            default=DEFAULT_SAMPLE_SIZE,
            show_default=True,
            help="Unlinked records listed per audit report",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_settings(kwargs: dict[str, Any]) -> Settings:
    settings = Settings(
        discord_token=(kwargs.pop("discord_token") or "").strip(),
        guild_id=(kwargs.pop("guild_id") or "").strip(),
        table_name=(kwargs.pop("table_name") or "").strip(),
        stream_arn=kwargs.pop("stream_arn"),
        region=kwargs.pop("region"),
        endpoint_url=kwargs.pop("endpoint_url"),
        catalog_path=kwargs.pop("catalog_path"),
        audit_topic_arn=kwargs.pop("audit_topic_arn"),
        debounce_seconds=kwargs.pop("debounce_ms") / 1000,
        audit_interval_seconds=float(kwargs.pop("audit_interval")),
        audit_sample_size=kwargs.pop("audit_sample_size"),
    )
    settings.validate()
    return settings


def with_settings(func: Callable[..., Awaitable[None]]) -> Callable[..., None]:
    """Turn an async ``func(settings, **rest)`` into a click callback."""

    @wraps(func)
    def wrapper(**kwargs: Any) -> None:
        try:
            settings = _build_settings(kwargs)
            asyncio.run(func(settings, **kwargs))
        except RoleSyncError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)

    return wrapper


def _store(settings: Settings) -> RecordStore:
    return RecordStore(settings.table_name, settings.region, settings.endpoint_url)


def _directory(settings: Settings) -> DiscordDirectory:
    return DiscordDirectory(settings.discord_token, settings.guild_id)


def _audit(settings: Settings, store: RecordStore) -> AuditReporter:
    sink = None
    if settings.audit_topic_arn:
        sink = SnsAuditSink(settings.audit_topic_arn, settings.region, settings.endpoint_url)
    return AuditReporter(store, sink, settings.audit_sample_size)


def _service(settings: Settings, store: RecordStore, directory: DiscordDirectory) -> SyncService:
    return SyncService(
        store,
        directory,
        load_catalog(settings.catalog_path),
        audit=_audit(settings, store),
        debounce_seconds=settings.debounce_seconds,
        audit_interval_seconds=settings.audit_interval_seconds,
    )


@click.group()
@click.version_option(package_name="rolesync")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="LOG_LEVEL",
    help="Logging level",
)
def cli(log_level: str) -> None:
    """rolesync: keep Discord roles in sync with the players table."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@settings_options
@with_settings
async def run(settings: Settings) -> None:
    """Run the sync service until interrupted."""
    async with _store(settings) as store, _directory(settings) as directory:
        service = _service(settings, store, directory)
        stream_arn = settings.stream_arn or await store.get_stream_arn()
        if not stream_arn:
            raise ConfigError(f"Table {settings.table_name} has no stream; set STREAM_ARN")

        reader = StreamReader(stream_arn, settings.region, settings.endpoint_url)
        click.echo(f"Syncing roles for guild {settings.guild_id} from {settings.table_name}")
        try:
            await service.run(reader.events())
        finally:
            await reader.close()


@cli.command()
@settings_options
@with_settings
async def sweep(settings: Settings) -> None:
    """Reconcile every linked record once, then exit."""
    async with _store(settings) as store, _directory(settings) as directory:
        service = _service(settings, store, directory)
        count = await service.startup_sweep()
        await service.close()
        click.echo(f"✓ Reconciled {count} linked record(s)")


@cli.command()
@settings_options
@with_settings
async def link(settings: Settings) -> None:
    """Link unlinked records to guild members by name."""
    async with _store(settings) as store, _directory(settings) as directory:
        service = _service(settings, store, directory)
        result = await service.link_sweep()
        await service.close()
        click.echo(f"✓ Linked: {len(result.linked)}")
        for key in result.linked:
            click.echo(f"  {key}")
        click.echo(f"  Ambiguous: {len(result.ambiguous)}")
        click.echo(f"  Unmatched: {result.unmatched}")
        if result.errors:
            click.echo(f"⚠️  {len(result.errors)} error(s); see log", err=True)


@cli.command()
@settings_options
@with_settings
async def audit(settings: Settings) -> None:
    """List unlinked records once."""
    async with _store(settings) as store:
        report = await _audit(settings, store).snapshot()
        if not report.total:
            click.echo("No unlinked records")
        else:
            click.echo(report.to_text())


@cli.command()
@click.argument("key")
@settings_options
@with_settings
async def plan(settings: Settings, key: str) -> None:
    """Show the role changes a record would cause, without applying them."""
    async with _store(settings) as store, _directory(settings) as directory:
        record = await store.get_record(key)
        if record is None:
            raise RecordNotFoundError(key)
        if record.external_id is None:
            click.echo(f"Record {key} is not linked to a Discord member")
            return

        reconciler = Reconciler(directory, load_catalog(settings.catalog_path))
        diff = await reconciler.plan(record)
        if diff is None:
            click.echo(f"Member {record.external_id} is not in the guild")
        elif diff.is_empty:
            click.echo(f"Record {key}: roles already in sync")
        else:
            click.echo(f"Record {key} -> member {record.external_id}")
            for tag_id in sorted(diff.to_remove):
                click.echo(f"  - {tag_id}")
            for tag_id in sorted(diff.to_add):
                click.echo(f"  + {tag_id}")


@cli.group()
def catalog() -> None:
    """Managed-role catalog commands."""
    pass


@catalog.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def catalog_validate(path: Path) -> None:
    """Validate a catalog file and list the roles it manages."""
    try:
        loaded = load_catalog(path)
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ {path}: {len(loaded.all_managed_ids)} managed role(s)")
    for category in loaded.categories:
        click.echo(f"  {category.name} ({' > '.join(category.fields)}): {len(category.values)}")
    if loaded.baseline:
        click.echo(f"  baseline: {', '.join(sorted(loaded.baseline))}")
    for name, tag_id in loaded.flags.items():
        click.echo(f"  flag {name}: {tag_id}")


if __name__ == "__main__":
    cli()
