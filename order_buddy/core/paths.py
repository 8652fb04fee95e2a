"""
order_buddy/core/paths.py — where Order Buddy keeps its files.

Everything that must outlive a redeploy (orders.db, logs/) sits under
DATA_DIR. Resolution order:

    ORDER_BUDDY_DATA_DIR        explicit override
    RAILWAY_VOLUME_MOUNT_PATH   mounted volume, using its data/ subfolder
    <repo>/data                 local development
"""

import os
import logging

log = logging.getLogger("orderbuddy.paths")

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_REPO_DATA = os.path.join(PROJECT_ROOT, "data")


def _pick_data_dir() -> str:
    override = os.environ.get("ORDER_BUDDY_DATA_DIR")
    if override:
        return override
    mount = os.environ.get("RAILWAY_VOLUME_MOUNT_PATH")
    if mount and os.path.isdir(mount):
        return mount if os.path.basename(mount.rstrip("/")) == "data" else os.path.join(mount, "data")
    return _REPO_DATA


DATA_DIR = _pick_data_dir()
USING_VOLUME = DATA_DIR != _REPO_DATA
DB_PATH = os.path.join(DATA_DIR, "orders.db")
LOG_DIR = os.path.join(DATA_DIR, "logs")

os.makedirs(DATA_DIR, exist_ok=True)


def validate_paths(data_dir: str = None) -> dict:
    """Check that the data directory exists and accepts writes.

    Returns {"ok", "errors", "warnings", "resolved"}; startup_checks turns
    errors into FAIL lines and warnings into WARN lines.
    """
    data_dir = data_dir or DATA_DIR
    errors, warnings = [], []
    resolved = {"PROJECT_ROOT": PROJECT_ROOT, "DATA_DIR": data_dir,
                "USING_VOLUME": str(USING_VOLUME)}

    if not os.path.isdir(data_dir):
        errors.append(f"DATA_DIR not found: {data_dir}")
    else:
        scratch = os.path.join(data_dir, ".write_check")
        try:
            with open(scratch, "w") as f:
                f.write("1")
            os.remove(scratch)
        except OSError as e:
            errors.append(f"DATA_DIR not writable: {e}")

    if os.environ.get("RAILWAY_ENVIRONMENT") and not USING_VOLUME:
        warnings.append(f"No persistent volume mounted; {DB_PATH} is wiped on each deploy")

    return {"ok": not errors, "errors": errors, "warnings": warnings, "resolved": resolved}
