"""Project persistence — save/load the outcome forest to the local workspace."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import config
from .errors import RepositoryError
from .models import Outcome, forest_from_dicts, forest_to_dicts

logger = logging.getLogger("ost_forge.persistence")

BACKUP_MARKER = ".backup."


def ensure_workspace_exists(workspace_dir: Path | None = None) -> Path:
    """Create the workspace directory if it doesn't exist and return its path."""
    workspace_dir = workspace_dir or config.WORKSPACE_DIR
    workspace_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Workspace directory ensured at %s", workspace_dir)
    return workspace_dir


def slugify_project_name(name: str) -> str:
    """Convert a project name to a safe directory slug.

    'Checkout Revamp: Q3 (Final)' -> 'checkout-revamp-q3-final'
    'Bob's Tree / v2' -> 'bobs-tree-v2'
    """
    slug = name.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    if not slug:
        slug = "untitled-project"
    return slug


def _state_file(project_dir: Path) -> Path:
    return project_dir / config.STATE_FILENAME


def _list_backups(project_dir: Path) -> list[Path]:
    """Backups newest first. Names carry a sortable timestamp suffix."""
    prefix = config.STATE_FILENAME + BACKUP_MARKER
    return sorted(
        (p for p in project_dir.glob(prefix + "*") if p.is_file()),
        key=lambda p: p.name,
        reverse=True,
    )


def _backup_existing(project_dir: Path) -> None:
    """Copy the current state file aside and prune old backups."""
    state_file = _state_file(project_dir)
    if not state_file.exists():
        return
    stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
    backup_file = project_dir / f"{config.STATE_FILENAME}{BACKUP_MARKER}{stamp}"
    suffix = 1
    while backup_file.exists():
        backup_file = project_dir / f"{config.STATE_FILENAME}{BACKUP_MARKER}{stamp}-{suffix}"
        suffix += 1
    backup_file.write_bytes(state_file.read_bytes())

    for stale in _list_backups(project_dir)[config.MAX_BACKUPS:]:
        try:
            stale.unlink()
        except OSError as exc:
            logger.warning("Could not remove old backup %s: %s", stale.name, exc)


@retry(
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    stop=stop_after_attempt(config.SAVE_RETRY_ATTEMPTS),
    retry=retry_if_exception_type(PermissionError),
    reraise=True,
)
def _replace(temp_file: Path, state_file: Path) -> None:
    """Swap the temp file into place. Retried while another process holds the file."""
    temp_file.replace(state_file)


def save_forest(project_dir: Path, outcomes: list[Outcome], project_name: str | None = None) -> Path:
    """Serialize the forest to project_dir, keeping rotating backups."""
    project_dir.mkdir(parents=True, exist_ok=True)
    state_data = {
        "schema_version": config.CURRENT_SCHEMA_VERSION,
        "project_name": project_name or project_dir.name,
        "last_saved": datetime.now().isoformat(),
        "outcomes": forest_to_dicts(outcomes),
    }

    try:
        _backup_existing(project_dir)
    except OSError as exc:
        logger.warning("Could not create backup in %s: %s", project_dir, exc)

    state_file = _state_file(project_dir)
    temp_file = project_dir / f"{config.STATE_FILENAME}.tmp"
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(state_data, f, indent=2, default=str)
    _replace(temp_file, state_file)
    logger.info("Forest saved to %s (%d outcomes)", state_file, len(outcomes))
    return state_file


def _read_state(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} does not hold a JSON object")
    return data


def load_forest(project_dir: Path) -> list[Outcome]:
    """Load the forest, falling back to the newest readable backup.

    Returns an empty forest when the project has never been saved.

    Raises:
        RepositoryError: If the state file and every backup are unreadable.
    """
    state_file = _state_file(project_dir)
    if not state_file.exists():
        return []

    try:
        saved_data = _read_state(state_file)
    except (OSError, ValueError) as exc:
        logger.error("Failed to read %s: %s", state_file, exc)
        saved_data = _recover_from_backup(project_dir)

    # Check schema version
    saved_version = saved_data.get("schema_version", "unknown")
    if saved_version != config.CURRENT_SCHEMA_VERSION:
        logger.warning(
            "Project was saved with schema version %s (current: %s). Some fields may not load correctly.",
            saved_version,
            config.CURRENT_SCHEMA_VERSION,
        )

    outcomes = forest_from_dicts(saved_data.get("outcomes"))
    logger.info("Forest loaded from %s (%d outcomes)", state_file, len(outcomes))
    return outcomes


def _recover_from_backup(project_dir: Path) -> dict:
    for backup in _list_backups(project_dir):
        try:
            data = _read_state(backup)
        except (OSError, ValueError) as exc:
            logger.warning("Backup %s unreadable: %s", backup.name, exc)
            continue
        logger.warning("Recovered project state from backup %s", backup.name)
        return data
    raise RepositoryError(f"No readable tree state or backup in {project_dir}")
