import logging
import os
import sys
from pathlib import Path

from visibility_scheduler.rules.models import Rules

logger = logging.getLogger(__name__)


# --- Settings ---
class Settings:
    """Filesystem locations, from VS_DATA_DIR / VS_RULES_PATH."""

    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("VS_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "visibility.db")
        self.rules_path = Path(os.environ.get("VS_RULES_PATH", self.base_dir / "rules.yaml"))


def validate_ops_rules(rules: Rules) -> None:
    """
    Validate operational requirements before startup.
    """
    # 1. Required env
    missing = [env_var for env_var in rules.ops.required_env if env_var not in os.environ]
    if missing:
        logger.critical("Missing required environment variables: %s", ", ".join(missing))
        sys.exit(1)

    # 2. Notifications need somewhere to go
    notifications = rules.notifications
    if notifications.enabled and not notifications.recipient:
        logger.warning("Notifications enabled but no recipient configured; none will be sent")

    # 3. Nothing can ever be scheduled
    if not rules.enabled_item_types:
        logger.warning("No item types enabled for scheduling")

    logger.info("Configuration validated.")
