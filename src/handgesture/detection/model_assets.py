"""
Model artifact download.

The handpose estimator is fetched on demand when the configured model
file is missing and auto-download is enabled.
"""

import os
import logging
import tempfile
import urllib.error
import urllib.request

from ..core.errors import ModelLoadError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16


def ensure_model_available(model_path: str, url: str, timeout_s: float = 30.0) -> str:
    """Ensure the model file exists at ``model_path``, downloading it if needed.

    The download goes to a temporary file in the target directory and is
    renamed into place only when complete, so an interrupted download
    never leaves a truncated model behind.

    Raises:
        ModelLoadError: If the download fails
    """
    if os.path.exists(model_path):
        logger.info("Model already exists at %s", model_path)
        return model_path

    target_dir = os.path.dirname(model_path) or "."
    os.makedirs(target_dir, exist_ok=True)
    logger.info("Downloading handpose model from %s to %s", url, model_path)

    fd, tmp_path = tempfile.mkstemp(prefix=".download-", dir=target_dir)
    try:
        downloaded = 0
        with os.fdopen(fd, "wb") as out, urllib.request.urlopen(url, timeout=timeout_s) as response:
            total = response.headers.get("Content-Length")
            while True:
                chunk = response.read(_CHUNK_SIZE)
                if not chunk:
                    break
                out.write(chunk)
                downloaded += len(chunk)
        if downloaded == 0:
            raise ModelLoadError("Downloaded model from %s is empty" % url)
        if total is not None and int(total) != downloaded:
            raise ModelLoadError("Incomplete model download from %s: %d of %s bytes"
                                 % (url, downloaded, total))
        os.replace(tmp_path, model_path)
    except (urllib.error.URLError, OSError) as e:
        raise ModelLoadError("Failed to download model from %s: %s" % (url, e)) from e
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)

    logger.info("Model download complete (%d bytes)", downloaded)
    return model_path
