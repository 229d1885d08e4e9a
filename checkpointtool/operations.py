import logging
from pathlib import Path
from typing import List, Dict, Optional, Tuple, Any, Union

from .config import BackupConfig
from .chain import CheckpointChain, CheckpointResult, regenerate_metadata
from .history import list_checkpoints, restore_checkpoint, verify_checkpoint


# Get logger instance (configuration is handled in cli.py)
logger = logging.getLogger('checkpointtool')


class BackupOperations:
    """Handles checkpoint operations like backup, list, restore, verify and regenerate."""

    def __init__(self, config: BackupConfig):
        """
        Initialize BackupOperations with a backup configuration.

        Args:
            config (BackupConfig): Paths, ignore patterns and run policies
        """
        self.config = config
        logger.debug(f"Initialized BackupOperations with backup root {config.backup_root}")

    def backup(self, checkpoint_name: Optional[str] = None) -> CheckpointResult:
        """
        Create a new checkpoint of the configured source directory.

        Files whose size and hash match the previous checkpoint's record are
        only recorded; everything else is copied in full.

        Args:
            checkpoint_name (Optional[str]): Explicit name for the checkpoint

        Returns:
            CheckpointResult: The committed checkpoint and its walk summary

        Raises:
            ValueError: If the source directory or the checkpoint name is invalid
            PermissionError: If there's a permission error accessing files
            RuntimeError: If there's any other error during the backup
        """
        try:
            result = CheckpointChain(self.config).run(checkpoint_name)
            summary = result.summary
            logger.info(f"Checkpoint {result.name} completed: {summary.copied} copied, "
                        f"{summary.unchanged} unchanged, {summary.bytes_copied / 1_048_576:.2f} MB stored")
            return result
        except (ValueError, PermissionError) as e:
            logger.error(f"Error creating checkpoint: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Error creating checkpoint: {str(e)}")
            raise RuntimeError(f"Failed to create checkpoint: {str(e)}") from e

    def list_checkpoints(self) -> List[Dict[str, Any]]:
        """
        List all checkpoints under the backup root.

        Returns:
            List[Dict[str, Any]]: See history.list_checkpoints

        Raises:
            RuntimeError: If there's an error reading checkpoint information
        """
        try:
            checkpoints = list_checkpoints(self.config)
            logger.debug(f"Retrieved information for {len(checkpoints)} checkpoints")
            return checkpoints
        except Exception as e:
            logger.error(f"Error listing checkpoints: {str(e)}")
            raise RuntimeError(f"Failed to list checkpoints: {str(e)}") from e

    def restore(self, checkpoint_name: str, output_directory: Union[str, Path]) -> int:
        """
        Restore the full tree recorded by a checkpoint.

        Args:
            checkpoint_name (str): Name of the checkpoint to restore
            output_directory: Directory to restore into

        Returns:
            int: Number of files restored

        Raises:
            ValueError: If the checkpoint doesn't exist or parameters are invalid
            PermissionError: If there's no permission to write to the output directory
            RuntimeError: If there's an error during the restore process
        """
        if not checkpoint_name:
            raise ValueError("Checkpoint name cannot be empty")
        if not output_directory:
            raise ValueError("Output directory cannot be empty")

        try:
            return restore_checkpoint(checkpoint_name, output_directory, self.config)
        except (ValueError, PermissionError) as e:
            # Re-raise these specific exceptions without wrapping
            logger.error(f"Error restoring checkpoint: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Error restoring checkpoint: {str(e)}")
            raise RuntimeError(f"Failed to restore checkpoint: {str(e)}") from e

    def verify(self, checkpoint_name: str) -> Tuple[bool, List[Dict[str, Any]]]:
        """
        Check a checkpoint's stored content against its change records.

        Returns:
            Tuple[bool, List[Dict[str, Any]]]: A tuple containing:
                - A boolean indicating if all content matches its record
                - A list of dictionaries describing mismatches

        Raises:
            ValueError: If the checkpoint doesn't exist
            RuntimeError: If there's an error during the check
        """
        try:
            all_valid, problems = verify_checkpoint(checkpoint_name, self.config)
            for i, item in enumerate(problems, 1):
                logger.debug(f"Problem {i}: {item['path']} stored={item['stored_hash']} "
                             f"calculated={item['calculated_hash']}")
            return all_valid, problems
        except ValueError as e:
            logger.error(f"Error verifying checkpoint: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Error verifying checkpoint: {str(e)}")
            raise RuntimeError(f"Failed to verify checkpoint: {str(e)}") from e

    def regenerate(self, directory: Union[str, Path]) -> int:
        """Rebuild folded metadata for every file under a directory."""
        try:
            return regenerate_metadata(directory, self.config)
        except (ValueError, PermissionError) as e:
            logger.error(f"Error regenerating metadata: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Error regenerating metadata: {str(e)}")
            raise RuntimeError(f"Failed to regenerate metadata: {str(e)}") from e
