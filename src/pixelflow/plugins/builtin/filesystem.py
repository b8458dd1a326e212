"""Local filesystem save provider."""

import logging
import mimetypes
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from pixelflow.core.models import Blob, CapabilityDescriptor, ParameterSpec, SaveResult
from pixelflow.plugins.base import SaveBase

logger = logging.getLogger(__name__)

# Hosts a file:// URL may name and still refer to this machine.
_LOCAL_HOSTS = {"", "localhost"}


def destination_path(destination: str) -> Path:
    """Turn a ``file://`` URL or plain path into a Path.

    Percent-escapes in a URL are decoded; plain paths are taken as written.

    Raises:
        ValueError: If the URL names a host other than ``localhost``.
    """
    parsed = urlparse(destination)
    if parsed.scheme != "file":
        return Path(destination).expanduser()
    if parsed.netloc not in _LOCAL_HOSTS:
        raise ValueError(f"Cannot save to remote host '{parsed.netloc}': {destination}")
    return Path(unquote(parsed.path)).expanduser()


class FilesystemSave(SaveBase):
    """
    Write a Blob to the local filesystem.

    Handles plain paths and ``file://`` URLs.  Parent directories are
    created as needed.  When ``overwrite`` is false an existing file is left
    untouched and the step fails with FileExistsError.
    """

    descriptor = CapabilityDescriptor(
        name="fs",
        kind="save",
        description="Save to the local filesystem",
        category="Storage",
        protocols=["file"],
        parameters={
            "destination": ParameterSpec(
                type="string", required=True, description="Path or file:// URL to write to"
            ),
            "overwrite": ParameterSpec(
                type="boolean", default=True, description="Replace an existing file"
            ),
        },
    )

    def invoke(self, input: Blob, params: dict[str, Any]) -> SaveResult:
        path = destination_path(params["destination"])
        if path.exists() and not params.get("overwrite", True):
            raise FileExistsError(f"Refusing to overwrite existing file: {path}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(input.data)
        logger.info(f"Saved {input.size} bytes to {path}")

        guessed, _ = mimetypes.guess_type(path.name)
        if guessed and guessed != input.mime:
            logger.warning(f"Saving {input.mime} data to {path.name}, which looks like {guessed}")

        return SaveResult(
            destination=str(path),
            bytes_written=input.size,
            provider=self.name,
            mime=input.mime,
        )
