"""
Session export files.

A session record holds the Q-table, parameters, algorithm, exploration
strategy, reward structure and grid configuration. Files are plain JSON
with a small metadata block alongside the record.
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SESSION_FORMAT_VERSION = "1.0"


def save_session(filepath: str, record: Dict[str, Any], name: str = "") -> bool:
    """Write a session record to a JSON file."""
    payload = dict(record)
    payload["metadata"] = {
        "name": name,
        "savedAt": datetime.now().isoformat(),
        "version": SESSION_FORMAT_VERSION,
    }
    try:
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(filepath, "w") as f:
            json.dump(payload, f, indent=2)
        logger.info("Saved session to %s", filepath)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error("Error saving session to %s: %s", filepath, e)
        return False


def load_session(filepath: str) -> Optional[Dict[str, Any]]:
    """Read a session record from a JSON file, None if unreadable."""
    try:
        with open(filepath, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Error loading session from %s: %s", filepath, e)
        return None

    if not isinstance(data, dict):
        logger.error("Session file %s does not hold a record", filepath)
        return None
    data.pop("metadata", None)
    return data


def generate_session_filename(directory: str, size: int) -> str:
    """Timestamped file name for a session export."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(directory, f"session_{size}x{size}_{timestamp}.json")
