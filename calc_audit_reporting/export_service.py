"""
Export Pipeline Service (``calc_audit_reporting.export_service``).

Responsibility
--------------
Renders a persisted summary report, together with the calculation records
it covers, into JSON, CSV or XLSX; hands the bytes to an ``ArtifactSink``;
then records the export metadata on the report row.

Architecture position
---------------------
**Reporting layer** -- orchestration only.  Rendering lives in
``exporters.py``, storage behind ``sinks.ArtifactSink``.

Invariants enforced
-------------------
* Rendering and storage complete before export metadata is written; any
  failure before that leaves the report's export fields untouched.
* The exported population is the report's stored ``record_ids``, not a
  fresh period query, so the file always matches the report's figures.
* Every exported record's hash is verified first; tampered content is never
  exported.
* Last export wins: a later export overwrites the export metadata.

Failure modes
-------------
* Unknown format -> ``UnsupportedFormatError`` before any I/O.
* Unknown report -> ``ReportNotFoundError``.
* Sink failure -> ``ExportStorageError``.
* Altered record -> ``TamperDetectedError``.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from calc_audit_kernel.db.engine import transaction_scope
from calc_audit_kernel.domain.clock import Clock, SystemClock
from calc_audit_kernel.exceptions import ReportNotFoundError
from calc_audit_kernel.logging_config import LogContext, get_logger
from calc_audit_kernel.selectors.calculation_selector import CalculationSelector
from calc_audit_kernel.services.calculation_store import verify_record_hash
from calc_audit_reporting.config import ExportConfig
from calc_audit_reporting.exporters import ExportBundle, render
from calc_audit_reporting.models import ExportArtifact, ExportFormat
from calc_audit_reporting.orm import SummaryReportModel
from calc_audit_reporting.selectors import ReportSelector
from calc_audit_reporting.sinks import ArtifactSink, LocalDirectorySink

logger = get_logger("reporting.export_service")


class ExportService:
    """
    Export a summary report to a file artifact.

    Contract
    --------
    * ``export`` returns an ``ExportArtifact`` whose ``location`` came from
      the sink.
    * The sink defaults to ``LocalDirectorySink(config.export_root)``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        sink: ArtifactSink | None = None,
        config: ExportConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._config = config or ExportConfig.with_defaults()
        self._sink = sink or LocalDirectorySink(self._config.export_root)
        self._clock = clock or SystemClock()

    @property
    def config(self) -> ExportConfig:
        return self._config

    def export(
        self,
        report_id: UUID,
        export_format: ExportFormat | str,
        include_breakdown: bool = True,
    ) -> ExportArtifact:
        fmt = ExportFormat.parse(export_format)

        with LogContext.bind(report_id=report_id):
            bundle = self._load_bundle(report_id)
            content = render(fmt, bundle, include_breakdown, self._config)
            file_name = self._config.file_name_for(
                bundle.report.company_id,
                bundle.report.report_period,
                bundle.report.id,
                fmt.extension,
            )
            location = self._sink.store(file_name, content, fmt.content_type)

            with transaction_scope(self._session_factory, "record_export") as session:
                report = session.get(SummaryReportModel, report_id, with_for_update=True)
                if report is None:
                    raise ReportNotFoundError(str(report_id))
                report.exported_at = self._clock.now()
                report.export_format = fmt.value
                report.export_path = location
                report.export_file_name = file_name
                session.flush()

            artifact = ExportArtifact(
                location=location,
                file_name=file_name,
                content_type=fmt.content_type,
                size_bytes=len(content),
            )
            logger.info(
                "report_exported",
                extra={
                    "export_format": fmt.value,
                    "file_name": file_name,
                    "size_bytes": artifact.size_bytes,
                    "include_breakdown": include_breakdown,
                    "record_count": len(bundle.records),
                },
            )
        return artifact

    def _load_bundle(self, report_id: UUID) -> ExportBundle:
        with transaction_scope(self._session_factory, "load_export_bundle") as session:
            report = ReportSelector(session).get(report_id)
            if report is None:
                raise ReportNotFoundError(str(report_id))
            selector = CalculationSelector(session)
            records = tuple(selector.get_records(list(report.record_ids)))
            steps = {}
            for record in records:
                record_steps = selector.get_steps(record.id)
                verify_record_hash(record, record_steps)
                steps[record.id] = record_steps
        return ExportBundle(report=report, records=records, steps=steps)
