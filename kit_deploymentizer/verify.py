"""Verification that generated images belong to the requested commit."""

from collections.abc import Mapping
import logging
import re
from typing import Any

from .events import Events
from .exceptions import CommitMismatchException

__all__ = ["extract_image_shas", "verify_images_for_commit"]

_LOGGER = logging.getLogger(__name__)

# Images built from a commit end with a `:<label>-<sha>` tag
IMAGE_SHA_RE = re.compile(r":[^:/]*-([a-f0-9]+)$", re.IGNORECASE)


def extract_image_shas(config: Mapping[str, Any]) -> list[str]:
    """Return the commit SHAs of all images in the configuration record."""
    shas: list[str] = []
    for value in config.values():
        if not isinstance(value, Mapping) or "image" not in value:
            continue
        if not (match := IMAGE_SHA_RE.search(value.get("image") or "")):
            continue
        shas.append(match.group(1))
    return shas


def verify_images_for_commit(
    config: Mapping[str, Any], commit_id: str | None, events: Events | None = None
) -> None:
    """Verify at least one image in the configuration matches the commit.

    Configurations without any commit tagged images are considered valid.
    """
    if not commit_id:
        return
    image_shas = extract_image_shas(config)
    _LOGGER.debug("Found image SHAs %s for commit %s", image_shas, commit_id)
    if image_shas and commit_id not in image_shas:
        err = CommitMismatchException(commit_id, image_shas)
        if events:
            events.fatal(str(err))
        raise err
    if events:
        events.info(f"Verified that generated images are valid for commitId '{commit_id}'")
