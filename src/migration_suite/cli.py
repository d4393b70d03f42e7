import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .applier import run_apply
from .archive import ArchiveFormat, create_archive, find_latest_archive
from .collector import CollectOptions, run_collect
from .config import KEY_DESCRIPTIONS, Config, LoggingConfig, parse_branches
from .constants import (
    APP_NAME,
    DEFAULT_ENV_FILE,
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
)
from .errors import MigrationError
from .initializer import run_init
from .manifest import read_image_list
from .repos import is_valid_name, read_repo_list
from .summary import RepoStatus, RunSummary

logger = logging.getLogger(APP_NAME)
console = Console()

COLLECT_KEYS = (
    "SOURCE_SEARCH_DIRS",
    "REPOS_LIST_FILE",
    "BUNDLE_OUTPUT_DIR",
    "DEFAULT_BRANCHES",
    "BUNDLE_LOOKBACK",
)
PACKAGE_KEYS = ("BUNDLE_OUTPUT_DIR",)
REMOTE_KEYS = ("GITLAB_HOST", "GITLAB_GROUP")
TOKEN_KEYS = ("GITLAB_USERNAME", "GITLAB_TOKEN")


def setup_logging(verbose: bool, settings: LoggingConfig | None = None) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): Enable debug output.
        settings (LoggingConfig | None): Optional rotating log file settings.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if settings is not None and settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def _remote_keys(config: Config) -> tuple[str, ...]:
    if config.remote.auth_method == "ssh":
        return REMOTE_KEYS
    return REMOTE_KEYS + TOKEN_KEYS


def _show_settings(title: str, rows: dict[str, object]) -> None:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="right")
    table.add_column()
    for key, value in rows.items():
        table.add_row(key, escape(str(value)))
    console.print(Panel(table, title=title, expand=False))


def _resolve_archive(config: Config, archive: str | None) -> Path:
    if archive:
        path = Path(archive).expanduser()
        if not path.is_file():
            raise MigrationError(f"Archive not found: {path}")
        return path
    return find_latest_archive(config.destination.archive_input_dir)


def cmd_collect(args: argparse.Namespace, config: Config) -> int:
    """Bundles recent history for each listed repository."""
    required = list(COLLECT_KEYS)
    if args.repo:
        required.remove("REPOS_LIST_FILE")
    if args.branches:
        required.remove("DEFAULT_BRANCHES")
    config.require(*required)

    if args.repo:
        if not is_valid_name(args.repo):
            raise MigrationError(f"Invalid repository name: {args.repo}")
        names = [args.repo]
    else:
        names = read_repo_list(config.source.repos_list_file)
    if not names:
        console.print("[yellow]No repositories listed. Nothing to do.[/yellow]")
        return EXIT_OK

    options = CollectOptions.from_config(config)
    options.fail_fast = args.fail_fast
    if args.branches:
        options.branches = parse_branches(args.branches)
    if args.no_lfs:
        options.include_lfs = False
    if args.lfs_current:
        options.lfs_fetch_all = False

    _show_settings(
        "Collect",
        {
            "Repositories": len(names),
            "Branches": ", ".join(options.branches),
            "Lookback": config.source.lookback,
            "Output": config.source.bundle_output_dir,
            "LFS": (
                ("all history" if options.lfs_fetch_all else "current checkout")
                if options.include_lfs
                else "disabled"
            ),
        },
    )
    summary = run_collect(config, names, options)
    summary.render(console)
    return summary.exit_code


def cmd_package(args: argparse.Namespace, config: Config) -> int:
    """Packs the bundle output directory into a single archive."""
    config.require(*PACKAGE_KEYS)
    fmt = ArchiveFormat(args.format)
    with console.status("Packaging bundles...", spinner="dots"):
        archive = create_archive(
            config.source.bundle_output_dir, config.source.archive_output_dir, fmt
        )
    size_mb = archive.stat().st_size / (1024 * 1024)
    console.print(f"[bold green]✔ Archive created:[/bold green] {archive}")
    console.print(f"[dim]Size: {size_mb:.1f} MB[/dim]")
    return EXIT_OK


def cmd_apply(args: argparse.Namespace, config: Config) -> int:
    """Applies every bundle in an archive to existing working copies."""
    config.require("DEST_SEARCH_DIRS", *_remote_keys(config))
    archive = _resolve_archive(config, args.archive)
    include_lfs = config.lfs.include and not args.no_lfs

    _show_settings(
        "Apply",
        {
            "Archive": archive.name,
            "Remote": f"{config.remote.name} ({config.remote.auth_method})",
            "Host": config.remote.host,
            "Group": config.remote.group,
            "LFS": "enabled" if include_lfs else "disabled",
        },
    )
    summary = run_apply(config, archive, include_lfs, args.fail_fast)
    summary.render(console)
    return summary.exit_code


def _print_next_steps(summary: RunSummary, config: Config) -> None:
    created = summary.by_status(RepoStatus.SUCCESS)
    if not created:
        return
    lines = ["1. Add these repositories to the repository list:"]
    lines += [f"     {o.name}" for o in created]
    lines.append(
        f"2. Make sure DEST_SEARCH_DIRS includes {config.destination.init_dest_dir}"
    )
    lines.append(f"3. Run '{APP_NAME} apply' to push to the destination")
    console.print(Panel(escape("\n".join(lines)), title="Next Steps", expand=False))


def cmd_init(args: argparse.Namespace, config: Config) -> int:
    """Creates first-time working copies from an archive."""
    config.require("INIT_DEST_DIR", *_remote_keys(config))
    archive = _resolve_archive(config, args.archive)
    include_lfs = config.lfs.include and not args.no_lfs

    console.print(f"Archive: [cyan]{escape(archive.name)}[/cyan]")
    summary = run_init(config, archive, include_lfs, args.fail_fast)
    summary.render(console)
    _print_next_steps(summary, config)
    return summary.exit_code


def cmd_images(args: argparse.Namespace, config: Config) -> int:
    """Validates the image list and shows the planned export filenames."""
    path = Path(args.file).expanduser() if args.file else config.images_file
    images = read_image_list(path)
    if not images:
        console.print(f"[yellow]No images configured in {escape(str(path))}[/yellow]")
        return EXIT_OK

    table = Table(title="Container Images")
    table.add_column("Image", style="cyan")
    table.add_column("Export File", style="green")
    for image in images:
        table.add_row(escape(image.reference), escape(image.export_filename))
    console.print(table)
    return EXIT_OK


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Migration Suite Configuration Keys", show_lines=True)
    table.add_column("Key", style="green")
    table.add_column("Description")
    for key, description in KEY_DESCRIPTIONS.items():
        table.add_row(key, description)
    console.print(table)


class MigrationHelpFormatter(argparse.HelpFormatter):
    """Custom help formatter that groups subcommands by environment."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []

            groups = {
                "Source Environment": ["collect", "package"],
                "Destination Environment": ["apply", "init"],
                "General": ["images", "config", "help"],
            }

            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")

                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        formatter_class=MigrationHelpFormatter,
        description="Move git history between disconnected environments.",
    )

    # Global flags
    parser.add_argument(
        "--env-file",
        type=Path,
        default=DEFAULT_ENV_FILE,
        help="Configuration file (default: ./.env)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command")

    collect_parser = subparsers.add_parser(
        "collect", help="Create incremental bundles from source repositories"
    )
    collect_parser.add_argument("-r", "--repo", help="Process only this repository")
    collect_parser.add_argument(
        "-b", "--branches", help="Branches to bundle (overrides DEFAULT_BRANCHES)"
    )
    collect_parser.add_argument(
        "--no-lfs", action="store_true", help="Skip LFS object export"
    )
    collect_parser.add_argument(
        "--lfs-current",
        action="store_true",
        help="Only fetch LFS objects for the current checkout",
    )
    collect_parser.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first failure"
    )

    package_parser = subparsers.add_parser(
        "package", help="Pack all bundles into one transferable archive"
    )
    package_parser.add_argument(
        "--format",
        choices=[f.value for f in ArchiveFormat],
        default=ArchiveFormat.TXT.value,
        help="Archive format (default: txt, a base64-encoded tar.gz)",
    )

    apply_parser = subparsers.add_parser(
        "apply", help="Apply bundles to existing repositories and push them"
    )
    apply_parser.add_argument(
        "--archive", help="Archive to apply (default: latest in ARCHIVE_INPUT_DIR)"
    )
    apply_parser.add_argument(
        "--no-lfs", action="store_true", help="Skip LFS object import"
    )
    apply_parser.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first failure"
    )

    init_parser = subparsers.add_parser(
        "init", help="Clone new repositories from bundles"
    )
    init_parser.add_argument(
        "--archive", help="Archive to use (default: latest in ARCHIVE_INPUT_DIR)"
    )
    init_parser.add_argument(
        "--no-lfs", action="store_true", help="Skip LFS object import"
    )
    init_parser.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first failure"
    )

    images_parser = subparsers.add_parser(
        "images", help="Validate the container image list"
    )
    images_parser.add_argument(
        "--file", help="Image list file (default: DOCKER_IMAGES_FILE)"
    )

    subparsers.add_parser("config", help="List all configuration keys")
    subparsers.add_parser("help", help="Show this help message")
    return parser


COMMANDS = {
    "collect": cmd_collect,
    "package": cmd_package,
    "apply": cmd_apply,
    "init": cmd_init,
    "images": cmd_images,
}


def main() -> None:
    """Main entry point for the Migration Suite CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command in (None, "help"):
        parser.print_help()
        return
    if args.command == "config":
        show_config_reference()
        return

    setup_logging(args.verbose)
    try:
        config = Config.load(args.env_file)
        setup_logging(args.verbose, config.logs)
        code = COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        console.print("\n[bold red]Interrupted.[/bold red]")
        code = EXIT_INTERRUPTED
    except MigrationError as e:
        logger.debug("Run aborted", exc_info=True)
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        code = EXIT_FAILURE

    sys.exit(code)


if __name__ == "__main__":
    main()
