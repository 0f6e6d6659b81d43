import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Workspace layout
WORKSPACE_DIR = Path(
    os.getenv("OST_WORKSPACE_DIR", Path.home() / "Documents" / "ost-workspace" / "projects")
).expanduser()
LOG_DIR = Path(
    os.getenv("OST_LOG_DIR", Path.home() / "Documents" / "ost-workspace")
).expanduser()
LOG_LEVEL = os.getenv("OST_LOG_LEVEL", "DEBUG").upper()

# Persistence
CURRENT_SCHEMA_VERSION = "1.0"
STATE_FILENAME = "tree.json"
MAX_BACKUPS = int(os.getenv("OST_MAX_BACKUPS", "5"))
SAVE_RETRY_ATTEMPTS = int(os.getenv("OST_SAVE_RETRY_ATTEMPTS", "3"))
