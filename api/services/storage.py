# SPDX-License-Identifier: Apache-2.0

"""
Local document storage for application uploads.
"""

import os
import re
import base64
import binascii
import logging
from datetime import datetime
from typing import Dict, Any
from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
ALLOWED_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "gif", "doc", "docx"}


class DocumentValidationError(ValueError):
    """Raised when an upload is too large, empty or of a disallowed type."""


def sanitize_file_name(file_name: str) -> str:
    """Keep only the base name with safe characters."""
    base = os.path.basename(file_name.replace("\\", "/"))
    base = re.sub(r"[^A-Za-z0-9._-]", "_", base).lstrip(".")
    return base or "upload"


def validate_upload(file_name: str, content: bytes) -> str:
    """
    Validate an upload and return its lowercased extension.

    Raises:
        DocumentValidationError: On empty, oversized or disallowed files
    """
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if extension not in ALLOWED_EXTENSIONS:
        raise DocumentValidationError(
            f"File type '{extension or 'unknown'}' is not allowed. "
            f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if not content:
        raise DocumentValidationError("File is empty")
    if len(content) > MAX_FILE_SIZE:
        raise DocumentValidationError("File exceeds the 10 MB limit")
    return extension


def decode_base64_content(content_base64: str) -> bytes:
    """Decode upload content, accepting data URLs."""
    if content_base64.startswith("data:") and "," in content_base64:
        content_base64 = content_base64.split(",", 1)[1]
    try:
        return base64.b64decode(content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise DocumentValidationError("File content is not valid base64")


class DocumentStorage:
    """Stores uploads under ``<root>/<application_id>/``."""

    def __init__(self, root_path: str = None):
        self.root_path = os.path.abspath(root_path or os.getenv("DOCUMENT_STORAGE_PATH", "./uploads"))

    def save(self, application_id: str, file_name: str, content: bytes) -> str:
        """
        Validate and write a file.

        Returns:
            Path relative to the storage root
        """
        validate_upload(file_name, content)
        safe_name = sanitize_file_name(file_name)
        stamped = f"{datetime.utcnow().strftime('%Y%m%d%H%M%S%f')}_{safe_name}"
        relative = os.path.join(sanitize_file_name(application_id), stamped)

        with tracer.start_as_current_span("storage.save") as span:
            span.set_attributes({"storage.size": len(content), "application.id": application_id})
            target = os.path.join(self.root_path, relative)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as handle:
                handle.write(content)

        logger.info("Stored document", extra={"application_id": application_id, "path": relative})
        return relative

    def health_check(self) -> Dict[str, Any]:
        """Check the storage root exists and is writable."""
        try:
            os.makedirs(self.root_path, exist_ok=True)
            marker = os.path.join(self.root_path, ".health")
            with open(marker, "w") as handle:
                handle.write("ok")
            os.remove(marker)
            return {"status": "healthy", "path": self.root_path}
        except OSError as e:
            logger.error(f"Document storage health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), "path": self.root_path}
