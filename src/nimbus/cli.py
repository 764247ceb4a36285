from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from nimbus.lib.config_parser import ConfigError, ConfigParser, generate_sample_config
from nimbus.output.errors import format_error
from nimbus.output.writers import ConsoleOutputWriter
from nimbus.pipeline.model import ExitCodes

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, debug: bool = False, quiet: bool = False) -> None:
    """Configure logging.

    The shell owns the terminal, so only warnings are logged by default.

    Args:
        verbose: Enable info logging
        debug: Enable debug logging
        quiet: Only log errors
    """
    if quiet:
        level = logging.ERROR
    elif debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nimbus",
        description="Interactive shell for querying cloud resources and piping results through external programs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  nimbus\n"
            "  nimbus -c 'query account list | grep Enabled'\n"
            "  nimbus run nightly.nimbus\n"
            "  nimbus init-config ~/.config/nimbus/config.yaml\n"
        ),
    )
    parser.add_argument(
        '-c', '--command',
        metavar='LINE',
        help='Execute a single command line and exit with its exit code'
    )

    general = parser.add_argument_group('General Options')
    general.add_argument(
        '--config',
        type=Path,
        metavar='PATH',
        help='Path to configuration file (default: $NIMBUS_CONFIG or ~/.config/nimbus/config.yaml)'
    )
    general.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable informational logging'
    )
    general.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    general.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress warnings, alias echo and error details'
    )
    general.add_argument(
        '--no-color',
        action='store_true',
        help='Disable coloured output'
    )

    subparsers = parser.add_subparsers(dest='subcommand', metavar='COMMAND')
    run_parser = subparsers.add_parser('run', help='Run commands from a script file')
    run_parser.add_argument('script', type=Path, help='Script with one command per line')
    init_parser = subparsers.add_parser('init-config', help='Write a sample configuration file and exit')
    init_parser.add_argument('path', type=Path, help='Where to write the configuration')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.debug, args.quiet)

    if args.subcommand == 'init-config':
        if args.path.exists():
            logger.error(f"Refusing to overwrite existing file {args.path}")
            return ExitCodes.GENERAL_ERROR
        generate_sample_config(args.path)
        print(f"Configuration written to {args.path}")
        return ExitCodes.SUCCESS

    try:
        config_parser = ConfigParser(args.config)
        config = config_parser.parse()
    except ConfigError as e:
        console = ConsoleOutputWriter(color=not args.no_color)
        console.write_error_line(format_error(str(e), quiet=args.quiet))
        if args.debug:
            logger.exception("Configuration error details:")
        return ExitCodes.CONFIGURATION_ERROR

    if args.no_color:
        config.output.color = False

    from nimbus.shell import ExecutionContext, run_command, run_repl, run_script

    context = ExecutionContext(config_parser=config_parser, quiet=args.quiet)

    if args.command is not None:
        result = run_command(args.command, context)
        return result.exit_code

    if args.subcommand == 'run':
        if not args.script.is_file():
            context.console.write_error_line(
                format_error(f"Script not found: {args.script}", quiet=args.quiet)
            )
            return ExitCodes.GENERAL_ERROR
        result = run_script(args.script, context)
        return result.exit_code

    logger.info("Starting interactive shell...")
    return run_repl(context)


if __name__ == "__main__":
    sys.exit(main())
