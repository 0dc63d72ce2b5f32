"""CLI interface for pyb2backup."""

import logging
from pathlib import Path
from typing import Any, NamedTuple, Optional

import click

from .api import B2Client
from .config import config
from .exceptions import B2BackupError
from .output import OutputFormatter
from .source import (
    LocalTreeProvider,
    SmbTreeProvider,
    SourceTreeProvider,
    parse_share_url,
)
from .sync import GroupFilter, GroupOutcome, ManifestStore, SyncEngine, discover_groups
from .utils import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY, format_size

logger = logging.getLogger(__name__)


class SourceSpec(NamedTuple):
    """Parsed ``USER:PASSWORD://server/share`` argument."""

    username: str
    password: str
    share_url: str


def parse_source(value: str) -> SourceSpec:
    """Parse the SMB source argument.

    Examples:
        >>> parse_source("alice:secret://nas/photos")
        SourceSpec(username='alice', password='secret', share_url='//nas/photos')

    Raises:
        click.BadParameter: If the value does not have exactly three parts
    """
    parts = value.split(":")
    if len(parts) != 3 or not parts[2].startswith("//"):
        raise click.BadParameter(
            "expected USER:PASSWORD://server/share", param_hint="SOURCE"
        )
    username, password, share_url = parts
    try:
        parse_share_url(share_url)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="SOURCE") from e
    return SourceSpec(username=username, password=password, share_url=share_url)


def parse_destination(value: str) -> tuple[str, str]:
    """Parse the ``KEY_ID:APPLICATION_KEY`` argument.

    Raises:
        click.BadParameter: If the value does not have exactly two parts
    """
    parts = value.split(":")
    if len(parts) != 2 or not all(parts):
        raise click.BadParameter(
            "expected KEY_ID:APPLICATION_KEY", param_hint="DESTINATION"
        )
    return parts[0], parts[1]


def parse_mode(value: Optional[str]) -> GroupFilter:
    if value is None:
        return GroupFilter.ALL
    try:
        return GroupFilter.from_string(value)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="MODE") from e


def _local_source(value: str) -> tuple[Path, str]:
    path = Path(value).expanduser()
    if not path.is_dir():
        raise click.BadParameter(f"{value} is not a directory", param_hint="SOURCE")
    return path, path.resolve().name


def _open_source(
    source: str, local: bool, out: OutputFormatter
) -> tuple[SourceTreeProvider, str]:
    """Connect to the source tree.

    Returns:
        Provider and share name (used as bucket name prefix)
    """
    if local:
        path, share_name = _local_source(source)
        return LocalTreeProvider(path), share_name

    spec = parse_source(source)
    out.info(f"Connecting to {spec.share_url} as {spec.username or 'guest'}...")
    provider = SmbTreeProvider(
        spec.share_url,
        username=spec.username,
        password=spec.password,
        domain=config.smb_domain,
    )
    return provider, provider.share_name


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option()
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """pyb2backup - Back up SMB shares into Backblaze B2 buckets."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyb2backup").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("source")
@click.argument("destination")
@click.argument("mode", required=False, default=None)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be uploaded without uploading"
)
@click.option(
    "--workers",
    "-j",
    type=int,
    default=1,
    help="Number of groups synced in parallel (default: 1)",
)
@click.option(
    "--max-attempts",
    type=int,
    default=DEFAULT_MAX_ATTEMPTS,
    help=f"Attempts per upload, part and finish call (default: {DEFAULT_MAX_ATTEMPTS})",
)
@click.option(
    "--part-size",
    type=int,
    default=None,
    help="Part size in MB for multi-part uploads (default: server recommendation)",
)
@click.option(
    "--retry-delay",
    type=float,
    default=DEFAULT_RETRY_DELAY,
    help=f"Base delay in seconds between attempts (default: {DEFAULT_RETRY_DELAY})",
)
@click.option(
    "--manifest",
    is_flag=True,
    help="Track whole-file hashes of multi-part uploads in a local manifest",
)
@click.option(
    "--local",
    is_flag=True,
    help="Treat SOURCE as a local directory instead of an SMB share",
)
@click.option(
    "--strict",
    is_flag=True,
    help="Exit with status 1 if any file or group failed",
)
@click.pass_context
def sync(
    ctx: Any,
    source: str,
    destination: str,
    mode: Optional[str],
    dry_run: bool,
    workers: int,
    max_attempts: int,
    part_size: Optional[int],
    retry_delay: float,
    manifest: bool,
    local: bool,
    strict: bool,
) -> None:
    """Back up every group of a share into its own bucket.

    SOURCE: USER:PASSWORD://server/share (or a directory with --local)

    DESTINATION: KEY_ID:APPLICATION_KEY

    MODE: "all" (default) or "filterNonYears" to only back up
    top-level directories named like a year
    """
    out: OutputFormatter = ctx.obj["out"]

    # Validate everything before touching the network
    group_filter = parse_mode(mode)
    key_id, application_key = parse_destination(destination)
    if local:
        _local_source(source)
    else:
        parse_source(source)
    if workers < 1:
        raise click.BadParameter("must be at least 1", param_hint="--workers")
    if max_attempts < 1:
        raise click.BadParameter("must be at least 1", param_hint="--max-attempts")
    if part_size is not None and part_size < 1:
        raise click.BadParameter("must be at least 1", param_hint="--part-size")
    if retry_delay < 0:
        raise click.BadParameter("must not be negative", param_hint="--retry-delay")

    client = B2Client(application_key_id=key_id, application_key=application_key)
    try:
        client.authorize()
        part_size_bytes = _resolve_part_size(client, part_size, out)
        provider, share_name = _open_source(source, local, out)

        engine = SyncEngine(
            client,
            provider,
            share_name,
            output=out,
            part_size=part_size_bytes,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            manifest_store=ManifestStore() if manifest else None,
        )
        groups = engine.discover_groups(group_filter)
        if not groups:
            out.warning(f"No groups found in {source if local else share_name}")
        else:
            out.info(f"Found {len(groups)} group(s) to back up")
        outcomes = engine.sync_all(groups, dry_run=dry_run, max_workers=workers)
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
    except (B2BackupError, OSError) as e:
        logger.debug("Sync aborted", exc_info=True)
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
    finally:
        client.close()

    _show_results(out, outcomes, dry_run)

    failed = any(not outcome.succeeded for outcome in outcomes)
    if failed:
        logger.warning("Some files or groups failed to sync")
        if strict:
            ctx.exit(1)


def _resolve_part_size(
    client: B2Client, part_size_mb: Optional[int], out: OutputFormatter
) -> int:
    """Part size in bytes, never below the account's minimum."""
    if part_size_mb is None:
        return client.recommended_part_size

    part_size = part_size_mb * 1000 * 1000
    minimum = client.absolute_minimum_part_size
    if minimum and part_size < minimum:
        out.warning(
            f"Part size {format_size(part_size)} is below the minimum, "
            f"using {format_size(minimum)}"
        )
        return minimum
    return part_size


def _show_results(
    out: OutputFormatter, outcomes: list[GroupOutcome], dry_run: bool
) -> None:
    if out.json_output:
        out.output_json(
            {
                "dry_run": dry_run,
                "groups": [outcome.stats for outcome in outcomes],
            }
        )
        return

    if not outcomes:
        return

    uploads = sum(o.uploads for o in outcomes)
    skips = sum(o.skips for o in outcomes)
    failures = sum(o.failures for o in outcomes)
    failed_groups = [o.root for o in outcomes if o.error is not None]

    summary_items = [
        ("Groups", str(len(outcomes))),
        ("Uploaded", f"{uploads} files"),
        ("Already backed up", f"{skips} files"),
    ]
    if dry_run:
        pending = sum(o.pending for o in outcomes)
        summary_items.append(("Would upload", f"{pending} files"))
    if failures:
        summary_items.append(("Failed", f"{failures} files"))
    if failed_groups:
        summary_items.append(("Failed groups", ", ".join(sorted(failed_groups))))

    title = "Dry Run Complete" if dry_run else "Backup Complete"
    out.print_summary(title, summary_items)


@main.command()
@click.argument("source")
@click.argument("mode", required=False, default=None)
@click.option(
    "--local",
    is_flag=True,
    help="Treat SOURCE as a local directory instead of an SMB share",
)
@click.pass_context
def groups(ctx: Any, source: str, mode: Optional[str], local: bool) -> None:
    """List the groups and buckets a sync of SOURCE would process.

    SOURCE: USER:PASSWORD://server/share (or a directory with --local)
    """
    out: OutputFormatter = ctx.obj["out"]
    group_filter = parse_mode(mode)
    if not local:
        parse_source(source)

    try:
        provider, share_name = _open_source(source, local, out)
        found = discover_groups(provider, share_name, group_filter)
    except (B2BackupError, OSError) as e:
        out.error(f"Failed to list groups: {e}")
        ctx.exit(1)

    found = sorted(found, key=lambda group: group.root)
    if out.json_output:
        out.output_json(
            [{"group": group.root, "bucket": group.bucket_name} for group in found]
        )
        return

    if not found:
        out.warning("No groups found.")
        return

    out.print_summary(
        f"Groups in {share_name}",
        [(group.root, group.bucket_name) for group in found],
    )


if __name__ == "__main__":
    main()
