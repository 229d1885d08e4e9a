import argparse
import sys
import logging
from pathlib import Path
from typing import NoReturn

from .config import BackupConfig
from .operations import BackupOperations

# Configure logging to write to file only, not stdout
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    filename='checkpointtool.log',
    filemode='a'
)
logger = logging.getLogger('checkpointtool')


def print_error_and_exit(error_message: str, exit_code: int = 1) -> NoReturn:
    """
    Print an error message and exit the program with the specified exit code.

    Args:
        error_message (str): The error message to display
        exit_code (int, optional): The exit code to use. Defaults to 1.
    """
    logger.error(error_message)
    print(f"Error: {error_message}", file=sys.stderr)
    sys.exit(exit_code)


def backup_command(args: argparse.Namespace) -> None:
    """
    Execute the backup command to create a new checkpoint of a directory.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup_root: Directory holding the checkpoints
            - source_directory: Directory to back up
            - checkpoint_name: Optional explicit checkpoint name
    """
    try:
        logger.info("Starting backup")
        source_dir = Path(args.source_directory)
        if not source_dir.exists():
            print_error_and_exit(f"Source directory '{source_dir}' does not exist")
        if not source_dir.is_dir():
            print_error_and_exit(f"'{source_dir}' is not a directory")

        ops = BackupOperations(BackupConfig.from_args(args))
        result = ops.backup(args.checkpoint_name)
        summary = result.summary
        print(f"Checkpoint {result.name} created successfully.")
        print(f"  copied: {summary.copied}, unchanged: {summary.unchanged}, "
              f"skipped directories: {summary.skipped_directories}")
        if summary.removed:
            print(f"  removed since {result.previous}: {len(summary.removed)}")
            for path in summary.removed:
                print(f"    - {path}")
        if summary.failures:
            print(f"  WARNING: {len(summary.failures)} files could not be backed up:")
            for path, message in summary.failures:
                print(f"    - {path}: {message}")
    except PermissionError as e:
        print_error_and_exit(f"Permission denied: {str(e)}")
    except FileNotFoundError as e:
        print_error_and_exit(f"File not found: {str(e)}")
    except ValueError as e:
        print_error_and_exit(f"Invalid value: {str(e)}")
    except Exception as e:
        print_error_and_exit(f"Error creating checkpoint: {str(e)}")


def list_command(args: argparse.Namespace) -> None:
    """
    Execute the list command to display all checkpoints under the backup root.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup_root: Directory holding the checkpoints
    """
    try:
        logger.info("Listing checkpoints")
        checkpoints = BackupOperations(BackupConfig.from_args(args)).list_checkpoints()

        if not checkpoints:
            logger.info("No checkpoints found")
            print("No checkpoints found.")
            return

        print(f"{'CHECKPOINT':<22}{'FILES':<8}{'STORED':<8}{'SIZE':<8}")
        total = 0
        for cp in checkpoints:
            marker = " (latest)" if cp['latest'] else ""
            print(f"{cp['name']:<22}{cp['files']:<8}{cp['stored_files']:<8}{cp['size']:<8}{marker}")
            total += cp['size']
        print(f"{'total':<38}{total:<8}")
    except Exception as e:
        print_error_and_exit(f"Error listing checkpoints: {str(e)}")


def restore_command(args: argparse.Namespace) -> None:
    """
    Execute the restore command to rebuild a checkpoint's tree.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup_root: Directory holding the checkpoints
            - checkpoint: Name of the checkpoint to restore
            - output_directory: Directory to restore files to
    """
    try:
        logger.info("Starting restore operation")
        output_dir = Path(args.output_directory)
        if output_dir.exists() and not output_dir.is_dir():
            print_error_and_exit(f"'{output_dir}' exists but is not a directory")

        ops = BackupOperations(BackupConfig.from_args(args))
        count = ops.restore(args.checkpoint, output_dir)
        logger.info(f"Checkpoint {args.checkpoint} restored to {output_dir}")
        print(f"Checkpoint {args.checkpoint} restored to {output_dir} ({count} files)")
    except FileNotFoundError as e:
        print_error_and_exit(f"File not found: {str(e)}")
    except PermissionError as e:
        print_error_and_exit(f"Permission denied: {str(e)}")
    except ValueError as e:
        print_error_and_exit(f"Invalid value: {str(e)}")
    except Exception as e:
        print_error_and_exit(f"Error restoring checkpoint: {str(e)}")


def verify_command(args: argparse.Namespace) -> None:
    """
    Execute the verify command to check a checkpoint's stored content.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup_root: Directory holding the checkpoints
            - checkpoint: Name of the checkpoint to verify
    """
    try:
        ops = BackupOperations(BackupConfig.from_args(args))
        all_valid, problems = ops.verify(args.checkpoint)
    except ValueError as e:
        print_error_and_exit(f"Invalid value: {str(e)}")
    except Exception as e:
        print_error_and_exit(f"Error verifying checkpoint: {str(e)}")

    if all_valid:
        print(f"Checkpoint {args.checkpoint} verification passed.")
        return

    print(f"\nCheckpoint {args.checkpoint} verification FAILED.\n")
    print(f"Found {len(problems)} problems:")
    for i, item in enumerate(problems, 1):
        print(f"\n{i}. {item['path']}")
        print(f"   Stored hash:     {item['stored_hash'] or '(no record)'}")
        print(f"   Calculated hash: {item['calculated_hash']}")
    sys.exit(1)


def regenerate_command(args: argparse.Namespace) -> None:
    """Execute the regenerate command to rebuild metadata for a directory."""
    try:
        ops = BackupOperations(BackupConfig.from_args(args))
        count = ops.regenerate(args.directory)
        print(f"Regenerated metadata for {count} files in {args.directory}")
    except ValueError as e:
        print_error_and_exit(f"Invalid value: {str(e)}")
    except Exception as e:
        print_error_and_exit(f"Error regenerating metadata: {str(e)}")


def main() -> None:
    """
    Main entry point for the checkpoint tool command line interface.
    Parses arguments and dispatches to appropriate command handlers.
    """
    parser = argparse.ArgumentParser(
        description="Checkpoint-based incremental directory backups",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    # Global options must come before the subcommand
    parser.add_argument(
        "--backup-root",
        default="backups",
        help="Directory holding checkpoints and the latest-checkpoint pointer"
    )
    parser.add_argument(
        "--ignore",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Directory name or relative path pattern to skip (repeatable)"
    )
    parser.add_argument(
        "--keep-staging",
        action="store_true",
        help="Leave the staging copy of the previous checkpoint for inspection"
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Abort on the first file that cannot be read"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Create a new checkpoint of a directory"
    )
    backup_parser.add_argument(
        "--source-directory",
        required=True,
        help="Directory to back up"
    )
    backup_parser.add_argument(
        "--checkpoint-name",
        default=None,
        help="Name of the new checkpoint (defaults to the current UTC time)"
    )

    # List command
    subparsers.add_parser(
        "list",
        help="List all checkpoints"
    )

    # Restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore a checkpoint to a directory"
    )
    restore_parser.add_argument(
        "--checkpoint",
        required=True,
        help="Checkpoint name to restore"
    )
    restore_parser.add_argument(
        "--output-directory",
        required=True,
        help="Directory to restore to (will be created if it doesn't exist)"
    )

    # Verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Check a checkpoint's stored content against its records"
    )
    verify_parser.add_argument(
        "--checkpoint",
        required=True,
        help="Checkpoint name to verify"
    )

    # Regenerate command
    regenerate_parser = subparsers.add_parser(
        "regenerate",
        help="Write folded metadata for every file in a directory"
    )
    regenerate_parser.add_argument(
        "--directory",
        required=True,
        help="Directory to fingerprint"
    )

    args = parser.parse_args()

    # Command dispatch
    command_handlers = {
        "backup": backup_command,
        "list": list_command,
        "restore": restore_command,
        "verify": verify_command,
        "regenerate": regenerate_command,
    }

    if args.command in command_handlers:
        command_handlers[args.command](args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
