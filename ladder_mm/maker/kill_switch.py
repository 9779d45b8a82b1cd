"""
File-based kill switch.

Creating the kill switch file halts quoting at the start of the next tick;
removing it resumes. The file can be created by hand, by the runner script
(--kill) or by the bot itself.

Example:
    >>> switch = KillSwitch(Path(".kill_switch"))
    >>> if switch.is_active():
    ...     print("Quoting halted")
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class KillSwitch:
    """
    Emergency stop backed by the presence of a file.

    Attributes:
        path: Location of the kill switch file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def is_active(self) -> bool:
        """True while the kill switch file exists."""
        return self.path.exists()

    def reason(self) -> Optional[str]:
        """Contents of the kill switch file, if active."""
        if not self.is_active():
            return None
        try:
            return self.path.read_text().strip() or "Kill switch file detected"
        except OSError:
            return "Kill switch file detected"

    def activate(self, reason: str = "Manual activation") -> None:
        """
        Create the kill switch file.

        Args:
            reason: Written to the file and logged.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                f.write(f"Kill switch activated at {datetime.now(timezone.utc).isoformat()}\n")
                f.write(f"Reason: {reason}\n")
            logger.critical(f"Kill switch ACTIVATED: {reason}")
        except OSError as e:
            logger.error(f"Failed to create kill switch file: {e}")

    def deactivate(self) -> bool:
        """
        Remove the kill switch file.

        Returns:
            True if the switch is now inactive.
        """
        try:
            if self.path.exists():
                os.remove(self.path)
                logger.info("Kill switch DEACTIVATED")
            return True
        except OSError as e:
            logger.error(f"Failed to remove kill switch file: {e}")
            return False
