"""Publish a job's output tree to object storage."""

import logging
import os
from typing import Optional

from synthea_service.jobs.errors import UploadError
from synthea_service.jobs.models import OutputReference
from synthea_service.storage.object_store import ObjectStorage

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    ".json": "application/json",
    ".xml": "application/xml",
    ".csv": "text/csv",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tgz": "application/gzip",
    ".ndjson": "application/fhir+ndjson",
}


def content_type_for(filename: str) -> str:
    _, ext = os.path.splitext(filename)
    return _CONTENT_TYPES.get(ext.lower(), "application/octet-stream")


def job_prefix(key_root: str, job_id: str) -> str:
    root = key_root.strip("/")
    return f"{root}/{job_id}" if root else job_id


def upload_output_tree(
    storage: ObjectStorage,
    job_id: str,
    output_dir: str,
    key_root: str,
) -> Optional[OutputReference]:
    """Upload every file below ``output_dir`` to ``<key_root>/<job_id>/<relpath>``.

    Returns None when ``output_dir`` does not exist. The first failed upload
    raises ``UploadError``; files already uploaded stay where they are.
    """
    if not os.path.isdir(output_dir):
        logger.info("Job %s: No output directory at %s, nothing to upload", job_id, output_dir)
        return None

    prefix = job_prefix(key_root, job_id)
    ref = OutputReference(prefix=prefix)
    for dirpath, dirnames, filenames in os.walk(output_dir):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            relative = os.path.relpath(path, output_dir).replace(os.sep, "/")
            key = f"{prefix}/{relative}"
            try:
                size = os.path.getsize(path)
                with open(path, "rb") as fh:
                    storage.put(key, fh, content_type_for(name))
            except Exception as e:
                logger.error("Job %s: Failed to upload %s: %s", job_id, relative, e)
                raise UploadError(f"Failed to upload {relative}: {e}") from e
            ref.files.append(relative)
            ref.file_count += 1
            ref.total_size += size

    logger.info(
        "Job %s: Uploaded %d files (%d bytes) under %s",
        job_id, ref.file_count, ref.total_size, prefix,
    )
    return ref
