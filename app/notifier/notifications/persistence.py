"""JSON snapshot persistence for the delivery queue and history store.

Snapshots are periodic, not transactional: a crash loses at most one
interval of changes. Failures are logged and never raised, so the in-memory
pipeline keeps running when the disk does not cooperate.

Usage:
    store = SnapshotStore("/var/lib/notifier/queue.json", name="queue")
    store.save({"pending": [...], "failed": [...]})
    state = store.load()
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from notifier.logging import get_module_logger

logger = get_module_logger()

SNAPSHOT_VERSION = "1.0"


class SnapshotStore:
    """Persist a JSON document to a local file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so readers never see a partial snapshot. Persistence is a
    no-op when ``path`` is None.

    Args:
        path: Snapshot file path, or None to disable
        name: Label used in log events
    """

    def __init__(self, path: Optional[str], name: str = "snapshot"):
        self.path = path
        self.name = name
        self.enabled = bool(path)

        if not self.enabled:
            logger.debug("snapshot_persistence_disabled", name=name)

    def save(self, state: Dict[str, Any]) -> bool:
        """Write a snapshot.

        ``timestamp`` and ``version`` are added to the document.

        Returns:
            True if the snapshot was written
        """
        if not self.enabled or self.path is None:
            return False

        document = {
            **state,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": SNAPSHOT_VERSION,
        }

        tmp_path = None
        try:
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".snapshot-", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            logger.warning(
                "snapshot_save_failed", name=self.name, path=self.path, error=str(e)
            )
            return False
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.debug("snapshot_saved", name=self.name, path=self.path)
        return True

    def load(self) -> Optional[Dict[str, Any]]:
        """Read the snapshot.

        Returns:
            The snapshot document, or None if missing, unreadable or invalid
        """
        if not self.enabled or self.path is None:
            return None

        if not os.path.exists(self.path):
            logger.debug("snapshot_not_found", name=self.name, path=self.path)
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                document = json.load(handle)
        except (OSError, ValueError) as e:
            logger.warning(
                "snapshot_load_failed", name=self.name, path=self.path, error=str(e)
            )
            return None

        if not isinstance(document, dict):
            logger.warning(
                "snapshot_load_failed",
                name=self.name,
                path=self.path,
                error="snapshot is not a JSON object",
            )
            return None

        logger.debug(
            "snapshot_loaded",
            name=self.name,
            path=self.path,
            version=document.get("version"),
        )
        return document

    def delete(self) -> None:
        if not self.enabled or self.path is None:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "snapshot_delete_failed", name=self.name, path=self.path, error=str(e)
            )
