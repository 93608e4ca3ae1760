"""Turn a finished generator run into a ``GenerationResult``.

Synthea prints one progress line per generated patient, e.g.::

    1 -- Alicia629 Kautzer186 (34 y/o F) Boston, Massachusetts

and writes its exports under ``<cwd>/output/<format>/``.
"""

import json
import logging
import os
from typing import Any, List, Optional

from synthea_service.jobs.models import GenerationResult
from synthea_service.jobs.params import OutputFormat

logger = logging.getLogger(__name__)

# Synthea writes these next to the patient bundles; they are not patients
FHIR_METADATA_PREFIXES = ("practitionerInformation", "hospitalInformation", "payerInformation")

PRIMARY_CSV = "patients.csv"


def extract_patient_summaries(stdout: str) -> List[str]:
    """Lines shaped like ``<int> -- <text>``, in order."""
    summaries = []
    for line in stdout.splitlines():
        trimmed = line.strip()
        if "--" not in trimmed:
            continue
        head, _ = trimmed.split("--", 1)
        try:
            int(head.strip())
        except ValueError:
            continue
        summaries.append(trimmed)
    return summaries


def output_dir_for(work_dir: str, output_format: OutputFormat) -> str:
    return os.path.join(work_dir, "output", output_format.value)


def _list_files(directory: str) -> List[str]:
    return sorted(
        name for name in os.listdir(directory)
        if os.path.isfile(os.path.join(directory, name))
    )


def _read_text(path: str, job_id: Optional[str]) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Job %s: Error reading output file %s: %s", job_id, path, e)
        return None


def _is_fhir_metadata(name: str) -> bool:
    return name.startswith(FHIR_METADATA_PREFIXES)


def _load_bundle(path: str, job_id: Optional[str]) -> Optional[dict]:
    text = _read_text(path, job_id)
    if text is None:
        return None
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning("Job %s: Error parsing FHIR file %s: %s", job_id, path, e)
        return None
    if isinstance(data, dict) and data.get("resourceType") == "Bundle":
        return data
    return None


def collect_fhir(directory: str, single: bool, job_id: Optional[str] = None) -> List[Any]:
    bundles = []
    for name in _list_files(directory):
        if not name.endswith(".json") or _is_fhir_metadata(name):
            continue
        bundle = _load_bundle(os.path.join(directory, name), job_id)
        if bundle is None:
            continue
        bundles.append(bundle)
        logger.info("Job %s: Added FHIR bundle from file: %s", job_id, name)
        if single:
            break
    return bundles


def collect_ccda(directory: str, single: bool, job_id: Optional[str] = None) -> List[Any]:
    if not single:
        logger.info(
            "Job %s: CCDA content is not included in the response for multiple patients.", job_id
        )
        return []
    for name in _list_files(directory):
        if not name.endswith(".xml"):
            continue
        text = _read_text(os.path.join(directory, name), job_id)
        if text is None:
            continue
        logger.info("Job %s: Added CCDA content from file: %s", job_id, name)
        return [text]
    return []


def collect_csv(directory: str, single: bool, job_id: Optional[str] = None) -> List[Any]:
    names = [n for n in _list_files(directory) if n.endswith(".csv")]
    if single:
        # patients.csv first, then any other csv as a fallback
        if PRIMARY_CSV in names:
            names.remove(PRIMARY_CSV)
            names.insert(0, PRIMARY_CSV)
        for name in names:
            text = _read_text(os.path.join(directory, name), job_id)
            if text is not None:
                logger.info("Job %s: Added CSV content from file: %s", job_id, name)
                return [text]
        return []

    files = []
    for name in names:
        text = _read_text(os.path.join(directory, name), job_id)
        if text is None:
            continue
        files.append({"fileName": name, "content": text})
    logger.info("Job %s: Added %d CSV files to the response", job_id, len(files))
    return files


_COLLECTORS = {
    OutputFormat.FHIR: collect_fhir,
    OutputFormat.CCDA: collect_ccda,
    OutputFormat.CSV: collect_csv,
}


def shape_content(output_format: OutputFormat, items: List[Any]) -> Any:
    """CSV content is always a list; other formats unwrap a single item."""
    if output_format == OutputFormat.CSV:
        return list(items)
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return list(items)


def collect_output(
    stdout: str,
    work_dir: str,
    output_format: OutputFormat,
    job_id: Optional[str] = None,
) -> GenerationResult:
    """Build the result payload from stdout and the working directory."""
    summaries = extract_patient_summaries(stdout)
    for line in summaries:
        logger.debug("Job %s: Extracted patient summary line: %s", job_id, line)

    message = None
    if not summaries:
        message = (
            "Synthea ran, but no patient summary lines found in stdout. "
            "Output files might still be generated."
        )
        logger.info("Job %s: Could not extract any patient summary lines from stdout.", job_id)

    directory = output_dir_for(work_dir, output_format)
    output_generated = os.path.isdir(directory)
    if not output_generated:
        if not summaries:
            logger.warning("Job %s: Expected output directory does not exist: %s", job_id, directory)
            log_directory_contents(work_dir, job_id)
    else:
        logger.info(
            "Job %s: Output directory found at: %s. Extracted %d patient summaries.",
            job_id, directory, len(summaries),
        )

    items: List[Any] = []
    if output_generated and summaries:
        try:
            items = _COLLECTORS[output_format](directory, len(summaries) == 1, job_id)
        except OSError as e:
            logger.warning("Job %s: Error reading output directory %s: %s", job_id, directory, e)
        if not items:
            logger.info(
                "Job %s: No %s content found in %s", job_id, output_format.value, directory
            )

    return GenerationResult(
        patient_summaries=summaries,
        output_format_used=output_format.value,
        output_generated=output_generated,
        output_file_content=shape_content(output_format, items),
        message=message,
    )


def log_directory_contents(directory: str, job_id: Optional[str] = None) -> None:
    """Debug aid: list what the generator left in ``directory``."""
    try:
        entries = sorted(os.listdir(directory))
    except OSError as e:
        logger.debug("Job %s: Error reading directory %s: %s", job_id, directory, e)
        return
    if not entries:
        logger.debug("Job %s: Directory %s is empty.", job_id, directory)
    for name in entries:
        is_dir = os.path.isdir(os.path.join(directory, name))
        logger.debug("Job %s: Found in %s: %s (directory: %s)", job_id, directory, name, is_dir)
