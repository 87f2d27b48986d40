import argparse
import getpass
import sys
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from db_export import __version__
from db_export.database import ProfileManager
from db_export.database.runner import ExportRunner, exit_code_for
from db_export.database.schema import filter_items, inspect_schema, name_matcher, render_tree
from db_export.errors import ExportError, QueryError
from db_export.extras import load_config
from db_export.logger import get_logger, setup_logging
from db_export.pipeline import ExportResult
from db_export.progress import LoggingProgressObserver
from db_export.sinks import SinkWriter


def create_arguments() -> argparse.ArgumentParser:
    """
    Creates and configures the argument parser for the command-line interface.

    Returns:
        argparse.ArgumentParser: The configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="db-export",
        description="Runs read-only queries on configured databases and exports the results",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config.toml")
    parser.add_argument("-v", "--verbose", action="store_true")

    commands = parser.add_subparsers(dest="command", required=True)

    export = commands.add_parser(
        "export",
        help="Export query results",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    export.add_argument(
        "-c",
        "--connections",
        type=str,
        required=True,
        nargs="+",
        help="Connection profiles to export from; each gets its own output file.",
    )
    query = export.add_mutually_exclusive_group(required=True)
    query.add_argument("-q", "--query", type=str)
    query.add_argument("--query-file", type=Path)
    export.add_argument(
        "-s",
        "--save-path",
        type=str,
        help="Output file; stdout when omitted or '-'.",
    )
    export.add_argument(
        "--output-format",
        type=str,
        choices=list(SinkWriter.formats()),
        help="Defaults to the save path extension, or 'text' on stdout.",
    )
    export.add_argument("--environment", type=str, help="Environment of the profiles to use.")
    export.add_argument("--workers", type=int, help="Jobs running at once.")
    export.add_argument("--batch-size", type=int, help="Rows fetched per round trip.")
    export.add_argument(
        "--count",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Count the rows first to report progress against a total.",
    )
    export.add_argument("--compact", action="store_true", help="Compact JSON.")
    export.add_argument(
        "--json-arrays", dest="arrays", action="store_true", help="JSON rows as arrays."
    )
    export.add_argument("--title", type=str, help="HTML page title.")
    export.add_argument(
        "--truncate", type=int, help="Cut text-vertical values to this many characters."
    )
    export.add_argument(
        "--table", type=str, help="Table created in SQLite output; 'data' when omitted."
    )

    schema = commands.add_parser(
        "schema", help="Show the schemas, tables and columns of a database"
    )
    schema.add_argument("-c", "--connection", type=str, required=True, help="Connection profile.")
    schema.add_argument("pattern", nargs="?", help="Show only items whose name contains this.")
    schema.add_argument(
        "-r", "--regex", action="store_true", help="Read the pattern as a regular expression."
    )
    schema.add_argument("--environment", type=str, help="Environment of the profile to use.")

    profiles = commands.add_parser("profiles", help="Inspect and add connection profiles")
    profile_commands = profiles.add_subparsers(dest="profiles_command", required=True)
    profile_commands.add_parser("list", help="List profiles as a tree")
    show = profile_commands.add_parser("show", help="Show the effective fields of a profile")
    show.add_argument("profile_id")
    add = profile_commands.add_parser("add", help="Add a profile")
    add.add_argument("profile_id")
    add.add_argument("--parent", type=str)
    add.add_argument(
        "--set",
        dest="fields",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Field to set; values are read as TOML when possible.",
    )
    add.add_argument(
        "--unset", action="append", default=[], metavar="KEY", help="Field to clear."
    )
    add.add_argument(
        "--password", action="store_true", help="Prompt for a password to store encrypted."
    )

    commands.add_parser("formats", help="List output formats")

    return parser


def parse_field(assignment: str) -> tuple[str, Any]:
    """
    Splits ``key=value``; the value is read as a TOML literal, else kept as text.
    """
    key, separator, value = assignment.partition("=")
    if not separator or not key.strip():
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got '{assignment}'")
    try:
        parsed = tomllib.loads(f"value = {value}")["value"]
    except tomllib.TOMLDecodeError:
        parsed = value
    return key.strip(), parsed


def summarize(result: ExportResult) -> str:
    line = (
        f"{result.job_id}: {result.state.value}, {result.rows_written} rows, "
        f"{result.bytes_written} bytes in {result.elapsed:.2f}s -> {result.target}"
    )
    if result.error is not None:
        line += f"\n  {type(result.error).__name__}: {result.error}"
    return line


def run_export(args: argparse.Namespace) -> int:
    query = args.query
    if args.query_file is not None:
        try:
            query = args.query_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise QueryError(f"Cannot read query file: {exc}") from exc

    runner = ExportRunner(
        args.config,
        environment=args.environment,
        max_workers=args.workers,
        batch_size=args.batch_size,
        count=args.count,
    )
    runner.progress.subscribe(LoggingProgressObserver())

    jobs = runner.plan_jobs(
        args.connections,
        query,
        save_path=args.save_path,
        output_format=args.output_format,
        sink_options={
            "compact": args.compact,
            "arrays": args.arrays,
            "title": args.title,
            "truncate": args.truncate,
            "table": args.table,
        },
    )
    results = runner.run(jobs)

    for result in results:
        print(summarize(result), file=sys.stderr)
    if len(results) > 1:
        rows, size = runner.progress.totals()
        print(f"total: {rows} rows, {size} bytes", file=sys.stderr)

    return exit_code_for(results)


def run_profiles(args: argparse.Namespace) -> int:
    manager = ProfileManager(args.config)

    if args.profiles_command == "list":
        for depth, profile_id in manager.tree.walk():
            print(f"{'  ' * depth}{profile_id}")
    elif args.profiles_command == "show":
        for key, value in manager.describe(args.profile_id).items():
            print(f"{key} = {value}")
    elif args.profiles_command == "add":
        fields = dict(parse_field(assignment) for assignment in args.fields)
        password = getpass.getpass("Password: ") if args.password else None
        file_path = manager.add_profile(
            args.profile_id,
            parent_id=args.parent,
            fields=fields,
            unset_fields=args.unset,
            password=password,
        )
        print(f"Saved profile '{args.profile_id}' to {file_path}")

    return 0


def run_schema(args: argparse.Namespace) -> int:
    matches = name_matcher(args.pattern, args.regex) if args.pattern else None

    manager = ProfileManager(args.config)
    items = inspect_schema(manager.resolve(args.connection, args.environment))
    if matches is not None:
        items = filter_items(items, matches)

    for line in render_tree(items):
        print(line)
    return 0


def run_formats(args: argparse.Namespace) -> int:
    for name, sink_cls in SinkWriter.formats().items():
        capabilities = sink_cls.capabilities
        print(
            f"{name:<15} {capabilities.buffering.value:<10} "
            f"{capabilities.truncation.value:<9} .{', .'.join(sink_cls.extensions)}"
        )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """
    The main function of the application.

    Returns:
        The process exit status.
    """
    load_dotenv()

    parser = create_arguments()
    args = parser.parse_args(argv)
    logger = get_logger("db_export")

    try:
        configurations = load_config(args.config)
        setup_logging(configurations.paths.logging, verbose=args.verbose)

        if args.command == "export":
            return run_export(args)
        elif args.command == "profiles":
            return run_profiles(args)
        elif args.command == "schema":
            return run_schema(args)
        return run_formats(args)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except ExportError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
