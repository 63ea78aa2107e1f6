from __future__ import annotations

from typing import Iterable


class FileType:
    DRAFT = "draft"
    FINAL_DOCUMENT = "final_document"
    COMPLETED_PAPER = "completed_paper"
    PLAGIARISM_REPORT = "plagiarism_report"
    AI_REPORT = "ai_report"
    REVISION = "revision"
    ADDITIONAL = "additional"
    ABSTRACT = "abstract"
    PRINTABLE_SOURCES = "printable_sources"
    GRAPHICS_TABLES = "graphics_tables"

    ALL = frozenset(
        {
            DRAFT,
            FINAL_DOCUMENT,
            COMPLETED_PAPER,
            PLAGIARISM_REPORT,
            AI_REPORT,
            REVISION,
            ADDITIONAL,
            ABSTRACT,
            PRINTABLE_SOURCES,
            GRAPHICS_TABLES,
        }
    )
    FINAL_CLASS = frozenset({FINAL_DOCUMENT, COMPLETED_PAPER})
    REPORTS = frozenset({PLAGIARISM_REPORT, AI_REPORT})


class ReadinessPurpose:
    FINAL = "final"
    REVISION = "revision"


def normalize_file_type(value: str | None) -> str:
    return (value or "").strip().lower()


def _final_slot_types(purpose: str) -> frozenset[str]:
    if purpose == ReadinessPurpose.REVISION:
        return FileType.FINAL_CLASS | {FileType.REVISION}
    return FileType.FINAL_CLASS


def missing_requirements(file_types: Iterable[str], *, requires_reports: bool, purpose: str) -> list[str]:
    present = {normalize_file_type(t) for t in file_types or ()}
    missing = []
    if not present & _final_slot_types(purpose):
        missing.append("revision_or_final" if purpose == ReadinessPurpose.REVISION else "final_document")
    if requires_reports:
        for report in sorted(FileType.REPORTS):
            if report not in present:
                missing.append(report)
    return missing


def is_ready(file_types: Iterable[str], *, requires_reports: bool, purpose: str = ReadinessPurpose.FINAL) -> bool:
    """Whether the uploaded file types satisfy the prerequisites for ``purpose``.

    Upload order is irrelevant; only the set of types matters.
    """
    return not missing_requirements(file_types, requires_reports=requires_reports, purpose=purpose)
