"""
Secret management for API keys.

Usage:
    from respect_monitor.config.secrets import get_openai_key, get_optional_key

    # Will raise if key is missing
    key = get_openai_key()

    # Connectors treat a missing key as "connector disabled"
    news_key = get_optional_key("NEWS_API_KEY")

CLI check:
    python -m respect_monitor.config.secrets --check
"""

import os
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

# Load .env file on module import: repo root first, then current working directory
_repo_root = Path(__file__).resolve().parent.parent.parent
_env_path = _repo_root / ".env"

if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()


OPENAI_API_KEY = "OPENAI_API_KEY"
NEWS_API_KEY = "NEWS_API_KEY"
GUARDIAN_API_KEY = "GUARDIAN_API_KEY"
GNEWS_API_KEY = "GNEWS_API_KEY"

KNOWN_KEYS = (OPENAI_API_KEY, NEWS_API_KEY, GUARDIAN_API_KEY, GNEWS_API_KEY)


class MissingAPIKeyError(Exception):
    """Raised when a required API key is not configured."""
    pass


def get_optional_key(name: str) -> Optional[str]:
    """Return the stripped key value, or None when unset or blank."""
    value = os.environ.get(name, "").strip()
    return value or None


def get_openai_key() -> str:
    """
    Get OpenAI API key from environment.

    Returns:
        str: The API key

    Raises:
        MissingAPIKeyError: If OPENAI_API_KEY is not set
    """
    key = get_optional_key(OPENAI_API_KEY)
    if not key:
        raise MissingAPIKeyError(
            "OPENAI_API_KEY not found. "
            "Copy .env.example to .env and add your key."
        )
    return key


def check_keys() -> Dict[str, str]:
    """
    Check which API keys are configured.

    Returns:
        dict: Status of each key ("OK" or "MISSING")
    """
    return {name: "OK" if get_optional_key(name) else "MISSING" for name in KNOWN_KEYS}


def _cli_check():
    """CLI entry point for --check flag."""
    status = check_keys()

    for key_name, key_status in status.items():
        print(f"{key_name}: {key_status}")

    # Only the LLM key gates anything; news connectors fall back to RSS
    if status[OPENAI_API_KEY] == "MISSING":
        print("\nOPENAI_API_KEY missing: keyword classification only.")
    if all(status[k] == "MISSING" for k in (NEWS_API_KEY, GUARDIAN_API_KEY, GNEWS_API_KEY)):
        print("No news API keys: media will be collected from RSS feeds.")
    sys.exit(0)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Check API key configuration"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check which API keys are configured"
    )

    args = parser.parse_args()

    if args.check:
        _cli_check()
    else:
        parser.print_help()
