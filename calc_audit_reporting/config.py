"""
Export Configuration Schema.

Where export artifacts are written and how they are formatted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Self
from uuid import UUID

from calc_audit_kernel.logging_config import get_logger

logger = get_logger("reporting.config")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class ExportConfig:
    """
    Configuration schema for the export pipeline.

    Controls the artifact root directory, file naming and number formatting.
    """

    # Directory the default sink writes under
    export_root: Path = Path("exports")

    # File names are "<prefix>-<company>-<report_period>-<report_id>.<ext>"
    file_name_prefix: str = "calculation-report"

    # Rounding precision for displayed amounts
    display_precision: int = 2

    csv_delimiter: str = ","

    def __post_init__(self):
        self.export_root = Path(self.export_root)
        if self.display_precision < 0:
            raise ValueError("display_precision cannot be negative")
        if not self.file_name_prefix or "/" in self.file_name_prefix:
            raise ValueError("file_name_prefix must be a non-empty file name fragment")
        if len(self.csv_delimiter) != 1:
            raise ValueError("csv_delimiter must be a single character")

    def file_name_for(
        self,
        company_id: str,
        report_period: str,
        report_id: UUID,
        extension: str,
    ) -> str:
        """One file per report; company ids are reduced to file-name-safe characters."""
        company = _UNSAFE_NAME_CHARS.sub("_", company_id).strip(".") or "_"
        return f"{self.file_name_prefix}-{company}-{report_period}-{report_id}.{extension}"

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("export_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from dictionary."""
        logger.info(
            "export_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
