"""CLI interface for pygrive."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click
import httpx

from . import __version__
from .api import DriveClient
from .auth import AuthAgent, OAuth2, wait_for_auth_code
from .cli_progress import SyncProgressDisplay
from .config import Config
from .exceptions import GriveError, GriveSyncAborted
from .output import OutputFormatter
from .sync import ConflictNaming, SyncEngine, SyncOptions

logger = logging.getLogger(__name__)
http_logger = logging.getLogger("pygrive.http")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool, debug: bool, log_file: Optional[Path]) -> None:
    """Configure console and file logging.

    Args:
        verbose: Show INFO messages on the console
        debug: Show DEBUG messages on the console (implies verbose)
        log_file: Also write every message (DEBUG and up) to this file
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logging.basicConfig(level=level, handlers=[console])

    package_logger = logging.getLogger("pygrive")
    package_logger.setLevel(logging.DEBUG if log_file else level)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(file_handler)
        package_logger.debug(f"pygrive version {__version__}")
        package_logger.debug(f"current time: {datetime.now().isoformat()}")


def _log_response(response: httpx.Response) -> None:
    request = response.request
    http_logger.debug(f"{request.method} {request.url} -> {response.status_code}")


def make_http_client(log_http: Optional[Path] = None) -> httpx.Client:
    """Create the shared HTTP client, optionally logging every response."""
    event_hooks: dict[str, list[Any]] = {}
    if log_http:
        handler = logging.FileHandler(log_http, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        http_logger.addHandler(handler)
        http_logger.setLevel(logging.DEBUG)
        http_logger.propagate = False
        event_hooks["response"] = [_log_response]
    return httpx.Client(
        timeout=httpx.Timeout(60.0, connect=30.0),
        follow_redirects=True,
        event_hooks=event_hooks,
    )


@click.group()
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="PYGRIVE_CONFIG_DIR",
    help="Directory holding the credentials file (default: ~/.config/pygrive)",
)
@click.option(
    "--verbose", "-V", is_flag=True, help="Enable more messages than normal"
)
@click.option(
    "--debug", "-d", is_flag=True, help="Enable debug level messages (implies -V)"
)
@click.option(
    "--log",
    "-l",
    "log_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a debug log to this file",
)
@click.option(
    "--log-http",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Log all HTTP responses in this file for debugging",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.version_option(version=__version__, prog_name="pygrive")
@click.pass_context
def main(
    ctx: Any,
    config_dir: Optional[Path],
    verbose: bool,
    debug: bool,
    log_file: Optional[Path],
    log_http: Optional[Path],
    quiet: bool,
    json_output: bool,
) -> None:
    """pygrive - keep a local directory in sync with Google Drive."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json_output, quiet=quiet)
    ctx.obj["config_dir"] = config_dir
    ctx.obj["log_http"] = log_http
    setup_logging(verbose, debug, log_file)


@main.command()
@click.option("--id", "-i", "client_id", help="OAuth client ID")
@click.option("--secret", "-e", "client_secret", help="OAuth client secret")
@click.option(
    "--redirect-uri", help="Local URI on which to listen for the auth redirect"
)
@click.option("--print-url", is_flag=True, help="Only print the authorization URL")
@click.option(
    "--timeout",
    type=float,
    default=300.0,
    show_default=True,
    help="Seconds to wait for the authorization redirect",
)
@click.pass_context
def auth(
    ctx: Any,
    client_id: Optional[str],
    client_secret: Optional[str],
    redirect_uri: Optional[str],
    print_url: bool,
    timeout: float,
) -> None:
    """Authorize pygrive to access your Google Drive.

    Prints an authorization URL, waits for Google to redirect back to the
    local redirect URI and stores the resulting refresh token.

    Examples:
        pygrive auth --id CLIENT_ID --secret CLIENT_SECRET
        pygrive auth --id CLIENT_ID --secret CLIENT_SECRET --print-url
    """
    out: OutputFormatter = ctx.obj["out"]
    config = Config(ctx.obj["config_dir"])

    client_id = client_id or config.client_id
    client_secret = client_secret or config.client_secret
    if not client_id or not client_secret:
        out.error("An OAuth client ID (--id) and secret (--secret) are required")
        ctx.exit(1)
        return
    redirect_uri = redirect_uri or config.redirect_uri

    http = make_http_client(ctx.obj["log_http"])
    try:
        oauth = OAuth2(client_id, client_secret, redirect_uri, http=http)
        url = oauth.make_auth_url()
        if print_url:
            click.echo(url)
            return

        out.info("-----------------------")
        out.info("Please go to this URL to authorize the app:")
        out.info("")
        click.echo(url)

        code = wait_for_auth_code(redirect_uri, timeout=timeout)
        token = oauth.auth(code)
        if not token.refresh_token:
            out.error("Google did not return a refresh token; please try again")
            ctx.exit(1)
            return

        config.set("id", client_id)
        config.set("secret", client_secret)
        config.set("refresh_token", token.refresh_token)
        config.set("redirect_uri", redirect_uri)
        config.save()

        out.print_summary(
            "Authorization Complete",
            [
                ("Status", "✓ Credentials saved successfully"),
                ("Config file", str(config.get_config_path())),
            ],
        )
    except KeyboardInterrupt:
        out.warning("Authorization cancelled by user")
        ctx.exit(130)
    except GriveError as e:
        out.error(f"Authorization failed: {e}")
        ctx.exit(1)
    finally:
        http.close()


@main.command()
@click.option(
    "--path",
    "-p",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Path to the working copy root",
)
@click.option("--dir", "-s", "subdir", help="Single subdirectory to sync")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Only detect which files need to be transferred, without doing it",
)
@click.option(
    "--upload-only",
    "-u",
    is_flag=True,
    help="Do not download anything, only upload local changes",
)
@click.option(
    "--download-only",
    is_flag=True,
    help="Do not upload anything, only download remote changes",
)
@click.option(
    "--no-remote-new",
    "-n",
    is_flag=True,
    help="Download only files that changed remotely and already exist locally",
)
@click.option(
    "--force",
    "-f",
    "force_download",
    is_flag=True,
    help="Always prefer the remote copy instead of uploading local changes",
)
@click.option(
    "--prefer-local",
    is_flag=True,
    help="Let the local copy win conflicts (the remote copy wins by default)",
)
@click.option(
    "--new-rev", is_flag=True, help="Keep a new remote revision for every upload"
)
@click.option(
    "--conflict-naming",
    type=click.Choice([n.value for n in ConflictNaming]),
    default=ConflictNaming.TIMESTAMP.value,
    show_default=True,
    help="How preserved conflict copies are named",
)
@click.option(
    "--ignore",
    "ignore_patterns",
    multiple=True,
    help="Ignore paths matching this pattern (repeatable)",
)
@click.option(
    "--upload-speed",
    "-U",
    type=click.IntRange(min=1),
    help="Limit upload speed in kbytes per second",
)
@click.option(
    "--download-speed",
    "-D",
    type=click.IntRange(min=1),
    help="Limit download speed in kbytes per second",
)
@click.option(
    "--progress-bar",
    "-P",
    is_flag=True,
    help="Show a progress bar for uploads and downloads",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Number of parallel transfer workers",
)
@click.option(
    "--no-trash",
    is_flag=True,
    help="Delete local files permanently instead of moving them to the trash",
)
@click.pass_context
def sync(
    ctx: Any,
    path: Path,
    subdir: Optional[str],
    dry_run: bool,
    upload_only: bool,
    download_only: bool,
    no_remote_new: bool,
    force_download: bool,
    prefer_local: bool,
    new_rev: bool,
    conflict_naming: str,
    ignore_patterns: tuple[str, ...],
    upload_speed: Optional[int],
    download_speed: Optional[int],
    progress_bar: bool,
    workers: int,
    no_trash: bool,
) -> None:
    """Synchronize a working copy with Google Drive.

    Local and remote changes since the last run are detected with a
    three-way comparison and propagated in both directions (unless
    restricted with --upload-only or --download-only).

    Examples:
        pygrive sync                        # Sync the current directory
        pygrive sync -p ~/drive --dry-run   # Preview changes
        pygrive sync -s Documents           # Only sync one subdirectory
        pygrive sync -u -U 500              # Upload only, at most 500 kB/s
    """
    out: OutputFormatter = ctx.obj["out"]
    config = Config(ctx.obj["config_dir"])

    options = SyncOptions(
        dry_run=dry_run,
        upload_only=upload_only,
        download_only=download_only,
        subdir_filter=subdir,
        force_download=force_download,
        upload_rate_limit=upload_speed * 1000 if upload_speed else None,
        download_rate_limit=download_speed * 1000 if download_speed else None,
        no_remote_new=no_remote_new,
        new_revision=new_rev,
        prefer_local=prefer_local,
        conflict_naming=ConflictNaming(conflict_naming),
        ignore_patterns=list(ignore_patterns),
        use_local_trash=not no_trash,
        max_workers=workers,
    )

    try:
        options.validate()
        client_id, client_secret, refresh_token = config.require_credentials()
    except GriveError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    logger.info(f"Using config file {config.get_config_path()}")
    http = make_http_client(ctx.obj["log_http"])
    oauth = OAuth2(
        client_id,
        client_secret,
        config.redirect_uri,
        refresh_token=refresh_token,
        http=http,
    )
    client = DriveClient(AuthAgent(oauth, http))

    try:
        if progress_bar and not dry_run and not out.quiet and not out.json_output:
            with SyncProgressDisplay() as display:
                engine = SyncEngine(client, out, tracker=display.create_tracker())
                result = engine.sync(path, options)
        else:
            result = SyncEngine(client, out).sync(path, options)
    except KeyboardInterrupt:
        out.warning("Sync cancelled by user")
        ctx.exit(130)
        return
    except GriveSyncAborted as e:
        out.error(str(e))
        if out.json_output and e.result is not None:
            out.output_json(e.result.to_dict())
        ctx.exit(1)
        return
    except GriveError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    finally:
        client.close()

    if out.json_output:
        out.output_json(result.to_dict())
    logger.info("Finished!")
    if result.failed:
        ctx.exit(1)


if __name__ == "__main__":
    main()
