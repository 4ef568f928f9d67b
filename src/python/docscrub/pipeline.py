"""
Anonymization pipeline.

``anonymize()`` is the core contract: DOCX bytes in, anonymized DOCX bytes out,
or an :class:`AnonymizationError` and nothing else. ``run_anonymization()``
wraps it for files, reports and exit codes.
"""

import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from lxml import etree

from .docx_metadata import (
    normalize_settings,
    remove_custom_xml,
    scrub_core_properties,
    scrub_extended_properties,
)
from .docx_package import DocxPackage
from .docx_revisions import anonymize_comment_authors, anonymize_revision_authors
from .errors import AnonymizationError, FileAccessError, MutationFailure
from .options import AnonymizerOptions

logger = logging.getLogger(__name__)

Stage = Callable[[DocxPackage, AnonymizerOptions], int]

# Fixed order; each stage commits its parts before the next one runs
STAGES: Tuple[Tuple[str, Stage], ...] = (
    ("core_properties", scrub_core_properties),
    ("extended_properties", scrub_extended_properties),
    ("settings", normalize_settings),
    ("custom_xml_parts_removed", remove_custom_xml),
    ("revision_authors", anonymize_revision_authors),
    ("comment_authors", anonymize_comment_authors),
)


@dataclass
class AnonymizationReport:
    stage_changes: Dict[str, int] = field(default_factory=dict)
    modified_parts: List[str] = field(default_factory=list)
    created_parts: List[str] = field(default_factory=list)
    removed_parts: List[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return sum(self.stage_changes.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "stages": dict(self.stage_changes),
            "total_changes": self.total_changes,
            "modified_parts": list(self.modified_parts),
            "created_parts": list(self.created_parts),
            "removed_parts": list(self.removed_parts),
        }


def anonymize_with_report(
    data: bytes, options: Optional[AnonymizerOptions] = None
) -> Tuple[bytes, AnonymizationReport]:
    options = options or AnonymizerOptions()
    package = DocxPackage.open(data, options.limits)
    report = AnonymizationReport()

    for stage_name, stage in STAGES:
        try:
            report.stage_changes[stage_name] = stage(package, options)
        except AnonymizationError:
            raise
        except (etree.LxmlError, ValueError, KeyError, TypeError) as exc:
            raise MutationFailure(f"Stage {stage_name} failed", str(exc), exc) from exc

    output = package.save()
    report.modified_parts = package.modified_parts
    report.created_parts = package.created_parts
    report.removed_parts = package.removed_parts
    logger.info(
        f"Anonymized package: {report.total_changes} change(s), "
        f"{len(report.removed_parts)} part(s) removed, {len(report.created_parts)} created"
    )
    return output, report


def anonymize(data: bytes, options: Optional[AnonymizerOptions] = None) -> bytes:
    output, _ = anonymize_with_report(data, options)
    return output


def setup_logging(debug: bool = False, log_path: Optional[str] = None) -> None:
    level = logging.DEBUG if debug else logging.INFO
    format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_path) if log_path else logging.NullHandler()
        ]
    )
    logger.debug("Logging initialized")


def _write_report(report_path: str, payload: Dict[str, Any]) -> None:
    if os.path.dirname(report_path):
        os.makedirs(os.path.dirname(report_path), exist_ok=True)
    with open(report_path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)


def _write_failure_report(report_path: str, input_path: str, error: AnonymizationError) -> None:
    """Persist a minimal error report so callers can surface context."""
    payload = {
        "status": "error",
        "input": input_path,
        "error_code": error.error_code,
        "message": str(error),
        "technical_details": error.technical_details,
    }
    try:
        _write_report(report_path, payload)
    except OSError as report_exc:
        logger.error(f"Failed to write error report: {report_exc}")


def _write_atomically(path: str, data: bytes) -> None:
    if os.path.dirname(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
    temp_path = path + ".tmp_docscrub"
    try:
        with open(temp_path, "wb") as fh:
            fh.write(data)
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


def run_anonymization(
    input_path: str,
    output_path: str,
    report_path: Optional[str] = None,
    options: Optional[AnonymizerOptions] = None,
    debug: bool = False,
) -> int:
    """Anonymize ``input_path`` into ``output_path``; returns a process exit code.

    On failure no output file is written (an existing one is left untouched)
    and, when ``report_path`` is given, an error report is written instead.
    """
    options = options or AnonymizerOptions()
    operation_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    logger.info(f"Starting anonymization {operation_id}: {input_path} -> {output_path}")

    try:
        try:
            with open(input_path, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            raise FileAccessError(f"Cannot read input file: {input_path}", str(exc), exc) from exc

        output, report = anonymize_with_report(data, options)

        try:
            _write_atomically(output_path, output)
        except OSError as exc:
            raise FileAccessError(f"Cannot write output file: {output_path}", str(exc), exc) from exc
    except AnonymizationError as error:
        logger.error(f"[{error.error_code}] {error}")
        if error.technical_details:
            logger.error(f"Details: {error.technical_details}")
        if error.original_error is not None and debug:
            traceback.print_exception(error.original_error)
        if report_path:
            _write_failure_report(report_path, input_path, error)
        return error.exit_code

    if report_path:
        payload = report.to_dict()
        payload["input"] = input_path
        payload["output"] = output_path
        try:
            _write_report(report_path, payload)
        except OSError as exc:
            logger.error(f"Failed to write report {report_path}: {exc}")
    logger.info(f"Anonymization {operation_id} completed with {report.total_changes} change(s)")
    return 0
