"""Brokerage client entrypoint.

Credentials come from the environment. For local runs they can also live in
`config/secrets.env` (or the file named by ROBINHOOD_SECRETS_FILE); values
already exported in the shell win over the file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def _load_local_secrets() -> None:
    """Load local credentials for development runs (ignored by git)."""
    override = (os.getenv("ROBINHOOD_SECRETS_FILE") or "").strip()
    if override:
        env_path = Path(override).expanduser()
    else:
        env_path = Path(__file__).resolve().parent / "config" / "secrets.env"
    if env_path.is_file():
        load_dotenv(env_path, override=False)


def main() -> None:
    _load_local_secrets()

    from src.trader.runner import main as runner_main

    runner_main()


if __name__ == "__main__":
    main()
