import logging
import os
from typing import Protocol


logger = logging.getLogger(__name__)


class BlobResolver(Protocol):
    def resolve(self, path: str) -> bytes | None:
        ...


class UploadsDirResolver:
    """
    Resolve legacy image_path references against the uploads directory.

    References look like "/uploads/<name>" or a bare file name. Only the
    file name is used, so a reference can never point outside base_dir.
    Files on ephemeral disks disappear on redeploy; those resolve to None.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def resolve(self, path: str) -> bytes | None:
        if not path:
            return None
        name = os.path.basename(path.replace("\\", "/").rstrip("/"))
        if not name:
            return None
        full_path = os.path.join(self.base_dir, name)
        try:
            with open(full_path, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            logger.info("Legacy image %s not readable: %s", path, exc)
            return None
        return data or None
