"""Credential and commit-author resolution for sync calls.

Credentials are supplied per call (CLI args or environment) and are never
read from, or written to, config files.  The commit author may also fall
back to the ``author`` section of the YAML config.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config (author only)

Environment variables:
    FRONTIER_SYNC_USERNAME: Basic-auth username (default: oauth2)
    FRONTIER_SYNC_TOKEN: Basic-auth password / access token (required)
    FRONTIER_SYNC_AUTHOR_NAME: Commit author name
    FRONTIER_SYNC_AUTHOR_EMAIL: Commit author email
"""

import logging
import os

from .sync.models import Author, Credentials

logger = logging.getLogger(__name__)

# GitLab accepts any username together with an OAuth access token
DEFAULT_USERNAME = "oauth2"


def load_credentials(
    username: str | None = None,
    password: str | None = None,
) -> Credentials:
    """Resolve basic-auth credentials for fetch and push.

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        username: Override username (takes precedence over env var).
        password: Override token/password (takes precedence over env var).

    Returns:
        ``Credentials`` instance.

    Raises:
        ValueError: If no token is found or it is blank.
    """
    final_username = (
        username or os.getenv("FRONTIER_SYNC_USERNAME") or DEFAULT_USERNAME
    ).strip()

    final_password = password or os.getenv("FRONTIER_SYNC_TOKEN")
    if not final_password or not final_password.strip():
        raise ValueError(
            "Sync token not found. Set FRONTIER_SYNC_TOKEN environment "
            "variable or pass --password CLI argument."
        )

    return Credentials(username=final_username, password=final_password.strip())


def load_author(
    name: str | None = None,
    email: str | None = None,
    yaml_fallbacks: dict | None = None,
) -> Author:
    """Resolve the commit author.

    Args:
        name: Override author name.
        email: Override author email.
        yaml_fallbacks: Dict of values from the YAML ``author`` section.

    Returns:
        ``Author`` instance.

    Raises:
        ValueError: If the name is missing, or the email is missing and
            cannot be derived from the name.
    """
    fb = yaml_fallbacks or {}

    final_name = name or os.getenv("FRONTIER_SYNC_AUTHOR_NAME") or fb.get("name")
    if not final_name or not str(final_name).strip():
        raise ValueError(
            "Commit author not found. Set FRONTIER_SYNC_AUTHOR_NAME, pass "
            "--author-name, or add 'author.name' to config.yml."
        )
    final_name = str(final_name).strip()

    final_email = (
        email or os.getenv("FRONTIER_SYNC_AUTHOR_EMAIL") or fb.get("email")
    )
    if not final_email:
        final_email = f"{final_name.replace(' ', '.').lower()}@users.noreply.gitlab.com"
        logger.debug("No author email configured, using %s", final_email)

    final_email = str(final_email).strip()
    if "@" not in final_email:
        raise ValueError(f"Invalid author email '{final_email}'")

    return Author(name=final_name, email=final_email)
