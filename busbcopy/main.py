import argparse
import os
import sys
import traceback

from busbcopy.config import settings
from busbcopy.domain.models import Source
from busbcopy.logging import LoggerFactory, logger, setup_logging
from busbcopy.services.batch import BatchContext, BatchOrchestrator
from busbcopy.storage import devices
from busbcopy.storage.commands import require_tools
from busbcopy.storage.copy import CopyOptions, copy_to_device
from busbcopy.storage.exceptions import (
    BusbcopyError,
    CommandError,
    UserAbortError,
)
from busbcopy.storage.verification import compute_source_checksum, verify_device

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 42

log = LoggerFactory.for_system()


class UsageParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit status 42."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = UsageParser(
        prog="busbcopy",
        description="Copy an image or file tree onto batches of USB storage devices.",
    )
    parser.add_argument(
        "--source", help="Source image or directory with files to copy to targets."
    )
    parser.add_argument(
        "--verify", action="store_true", help="When copying an image, automatically verify."
    )
    parser.add_argument(
        "--eject", action="store_true", help="Use 'eject' when done with copying."
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument("--log-dir", help="Directory for log files")

    commands = parser.add_subparsers(dest="command", metavar="<command>")
    commands.add_parser("enum", help="Enumerate all valid USB storage devices.")
    copy_parser = commands.add_parser("copy", help="Copy to a single target.")
    copy_parser.add_argument("device", help="Target block device, e.g. /dev/sdb")
    commands.add_parser(
        "verify", help="Verify all attached USB storage devices against source image."
    )
    batch_parser = commands.add_parser(
        "batchcopy", help="Batch copy to all USB storage devices attached to this system."
    )
    batch_parser.add_argument(
        "min_count",
        nargs="?",
        type=int,
        default=1,
        help="Minimum number of devices required per round (default: 1)",
    )
    return parser


def cmd_enum(args) -> int:
    for device in devices.validated_usb_storage():
        print(device.path)
    return EXIT_OK


def cmd_copy(args) -> int:
    source = Source.from_path(args.source)
    options = CopyOptions(verify=args.verify, eject=args.eject)
    copy_to_device(args.device, source, options)
    return EXIT_OK


def cmd_verify(args) -> int:
    checksum = compute_source_checksum(Source.from_path(args.source))
    verify_log = LoggerFactory.for_verify()
    for device in devices.validated_usb_storage():
        if verify_device(device, checksum):
            verify_log.opt(colors=True).info(
                f"Verifying {device.path} ... <green>passed.</green>"
            )
        else:
            verify_log.opt(colors=True).error(
                f"Verifying {device.path} ... <red>failed!</red>"
            )
    return EXIT_OK


def cmd_batchcopy(args) -> int:
    source = Source.from_path(args.source)
    context = BatchContext(
        source=source,
        options=CopyOptions(verify=args.verify, eject=args.eject),
    )
    BatchOrchestrator(context).run(min_count=args.min_count)
    return EXIT_OK


COMMANDS = {
    "enum": cmd_enum,
    "copy": cmd_copy,
    "verify": cmd_verify,
    "batchcopy": cmd_batchcopy,
}


def format_call_chain(error: BaseException) -> str:
    """``=> in <function>`` lines for busbcopy frames, innermost first."""
    frames = [
        frame.name
        for frame in traceback.extract_tb(error.__traceback__)
        if "busbcopy" in frame.filename
    ]
    return "".join(f"\n    => in {name}" for name in reversed(frames))


def format_failure(error: BaseException) -> str:
    """Error line plus the busbcopy call chain that led to the failure."""
    message = str(error)
    if isinstance(error, CommandError):
        message += format_call_chain(error)
    return message


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help(sys.stderr)
        return EXIT_USAGE

    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=args.log_dir or settings.get_setting("log_dir"),
    )
    try:
        if os.geteuid() != 0:
            log.error("This script must be run as root!")
            return EXIT_USAGE
        try:
            require_tools()
            return COMMANDS[args.command](args)
        except KeyboardInterrupt:
            log.warning("User aborted!")
            return EXIT_USAGE
        except UserAbortError:
            return EXIT_USAGE
        except BusbcopyError as error:
            log.error(format_failure(error))
            return EXIT_FAILURE
        except Exception as error:
            log.opt(exception=error).error(
                f"Unexpected {type(error).__name__}: {error}{format_call_chain(error)}"
            )
            return EXIT_FAILURE
    finally:
        logger.complete()


if __name__ == "__main__":
    sys.exit(main())
