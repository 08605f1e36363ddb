import click
import yaml

from .config import get_logger, ANY_MIME_TYPE
from .sync.batching import do_in_batch
from .sync.config import SyncSettings, FetchRequest
from .sync.context import SyncContext
from .sync.error_tracker import SyncException
from .sync.logging_manager import LoggingManager
from .sync.naming import parse_rfc3339

logger = get_logger(__name__)


def parse_form_data(pairs):
    """Turn ('key=value', ...) into a dict; None when no pairs were given."""
    if not pairs:
        return None
    form_data = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint='--post')
        form_data[key] = value
    return form_data


def parse_time(value, param_hint):
    if value is None:
        return None
    try:
        return parse_rfc3339(value)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint=param_hint)


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False), help='YAML settings file')
@click.pass_context
def cli(ctx, config_path):
    """Fetch portal resources and keep a versioned copy in the blob store."""
    try:
        settings = SyncSettings.from_yaml(config_path) if config_path else SyncSettings.from_dict({})
    except SyncException as e:
        raise click.ClickException(e.message)
    LoggingManager.configure(log_level=settings.log_level, log_file=settings.log_file)
    ctx.obj = SyncContext(settings)
    ctx.call_on_close(ctx.obj.close)


@cli.command(name='fetch')
@click.argument('url')
@click.option('--post', 'post_pairs', multiple=True, help='Form field KEY=VALUE; makes the request a POST')
@click.option('--expect', 'expected_mime', default=ANY_MIME_TYPE, show_default=True, help='Expected content-type prefix')
@click.option('--out', 'out_file', type=click.Path(dir_okay=False, writable=True), help='Write the body to this file')
@click.pass_obj
def fetch(context: SyncContext, url: str, post_pairs, expected_mime: str, out_file: str):
    """Fetch one resource through the resilient transport."""
    form_data = parse_form_data(post_pairs)
    method = 'POST' if form_data is not None else 'GET'
    try:
        download = context.http.fetch(method, url, form_data=form_data, expected_mime=expected_mime)
    except SyncException as e:
        logger.error(f"Error fetching {url}: {e}")
        raise click.ClickException(e.message)

    click.echo(f"{download.name}\t{download.content_type}\t{download.size} bytes\t(status {download.status_code})")
    if out_file:
        with open(out_file, 'wb') as f:
            f.write(download.content)


@cli.command(name='sync')
@click.argument('url')
@click.option('--folder', default='', help='Store folder')
@click.option('--name', required=True, help='Artifact name without extension')
@click.option('--ending', default='', help='Artifact extension including the dot')
@click.option('--created', help='Source time of the resource (ISO 8601)')
@click.option('--post', 'post_pairs', multiple=True, help='Form field KEY=VALUE; makes the request a POST')
@click.option('--expect', 'expected_mime', default=ANY_MIME_TYPE, show_default=True, help='Expected content-type prefix')
@click.option('--redownload', is_flag=True, default=False, help='Re-fetch once the stored copy is older than the freshness window')
@click.option('--force', is_flag=True, default=False, help='Always fetch from the origin')
@click.pass_obj
def sync(context: SyncContext, url, folder, name, ending, created, post_pairs, expected_mime, redownload, force):
    """Fetch one resource if stale and store it if it changed."""
    request = FetchRequest(
        url=url, folder=folder, name=name, ending=ending,
        created=parse_time(created, '--created'),
        form_data=parse_form_data(post_pairs),
        expected_mime=expected_mime,
        redownload=redownload,
    )
    try:
        outcome = context.reconciler.sync(request, force=force)
    except SyncException as e:
        logger.error(f"Error syncing {url}: {e}")
        raise click.ClickException(e.message)
    source = "origin" if outcome.fresh else "store"
    click.echo(f"{outcome.action.value}\t{outcome.object.path}\t(from {source})")


@cli.command(name='sync-batch')
@click.argument('requests_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--batch-size', type=click.INT, default=10, show_default=True)
@click.option('--force', is_flag=True, default=False, help='Always fetch from the origin')
@click.pass_obj
def sync_batch(context: SyncContext, requests_file, batch_size, force):
    """Sync a YAML list of fetch requests in batches."""
    with open(requests_file, 'r', encoding='utf-8') as f:
        entries = yaml.safe_load(f) or []
    try:
        requests_list = [FetchRequest(**entry) for entry in entries]
    except (TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid request in {requests_file}: {e}")

    def run(start, end):
        for request in requests_list[start:end]:
            outcome = context.reconciler.sync(request, force=force)
            click.echo(f"{outcome.action.value}\t{outcome.object.path}")

    try:
        do_in_batch(batch_size, len(requests_list), run)
    except SyncException as e:
        logger.error(f"Error in sync-batch: {e}", exc_info=True)
        raise click.ClickException(e.message)


@cli.command(name='reconcile')
@click.argument('prefix')
@click.option('--live-file', required=True, type=click.File('r', encoding='utf-8'), help='File with one live path per line')
@click.option('--child-folder', 'child_folders', multiple=True, help='Folder holding dependents of the artifacts under PREFIX')
@click.option('--min-time', default='1970-01-01T00:00:00Z', show_default=True, help='Only consider artifacts with a later source time')
@click.pass_obj
def reconcile(context: SyncContext, prefix, live_file, child_folders, min_time):
    """Back up and delete stored artifacts that no longer exist upstream."""
    live_paths = {line.strip() for line in live_file if line.strip()}
    try:
        result = context.reconciler.reconcile_missing(
            prefix, live_paths, child_folders, parse_time(min_time, '--min-time')
        )
    except SyncException as e:
        logger.error(f"Error reconciling {prefix}: {e}")
        raise click.ClickException(e.message)

    for outcome in result.outcomes:
        line = f"{outcome.action}\t{outcome.path}"
        if outcome.parent:
            line += f"\t(parent {outcome.parent})"
        if outcome.error:
            line += f"\t{outcome.error}"
        click.echo(line)
    click.echo(f"{len(result.deleted)} deleted, {len(result.failed)} failed")
    if not result.ok:
        raise SystemExit(1)


@cli.command(name='ls')
@click.argument('prefix', default='')
@click.pass_obj
def ls(context: SyncContext, prefix):
    """List stored artifacts under PREFIX."""
    try:
        objects = context.reconciler.list_objects(prefix)
    except SyncException as e:
        raise click.ClickException(e.message)
    for obj in objects:
        updated = obj.updated_at.isoformat() if obj.updated_at else '-'
        click.echo(f"{obj.path}\t{obj.content_type}\t{obj.content_hash}\t{updated}")


def main():
    cli()

if __name__ == '__main__':
    main()
