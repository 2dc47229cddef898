"""Root logger setup shared by the CLI and the API server.

Both entry points call ``configure_logging`` with the log directory from
Settings. A second call is a no-op, so the server can configure logging in
``create_app`` whether it is started via ``__main__`` or ``uvicorn``.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from src.config.settings import DEFAULT_LOG_DIR

LOG_FILE = "tabular_mirror.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: int = logging.INFO,
    log_dir: Union[str, Path] = DEFAULT_LOG_DIR,
    root: Optional[logging.Logger] = None,
) -> bool:
    """Attach console and ``<log_dir>/tabular_mirror.log`` handlers to the root logger.

    Args:
        level: Level set on the configured logger
        log_dir: Directory for the log file, created if missing
        root: Logger to configure (default: the root logger)

    Returns:
        True if handlers were installed, False if the root logger was
        already configured
    """
    root = root or logging.getLogger()
    if root.handlers:
        return False

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    log_path = Path(log_dir) / LOG_FILE
    try:
        os.makedirs(log_path.parent, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        root.warning(f"File logging disabled, cannot open {log_path}: {e}")
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(level)
    return True
