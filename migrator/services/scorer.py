"""
Migration readiness scoring.

Combines the reports of every media step into one 0-100 score:

    pipeline completion        20
    upload success rate        25
    record success rate        20
    storage accessibility      15
    business-logic compliance  10
    compression effectiveness  10
"""

import logging
import random
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..loaders.base import ObjectStorage
from ..models.migration import OutcomeStatus, utcnow

logger = logging.getLogger(__name__)

SUCCESS_THRESHOLD = 85
PARTIAL_SUCCESS_THRESHOLD = 70

PIPELINE_WEIGHT = 20
UPLOAD_WEIGHT = 25
RECORD_WEIGHT = 20
STORAGE_WEIGHT = 15
BUSINESS_LOGIC_WEIGHT = 10
COMPRESSION_WEIGHT = 10

# Percent size reduction per compression point; 30% earns the full weight
COMPRESSION_POINT_DIVISOR = 3

PASSED_RATE = 95
UPLOAD_WARNING_RATE = 85
COMPRESSION_PASSED_RATIO = 25
COMPRESSION_WARNING_RATIO = 15
COMPRESSION_RECOMMEND_RATIO = 20

STORAGE_COST_PER_GB = 0.02
LOAD_TIME_FACTOR = 0.4
GIGABYTE = 1024 ** 3

SAMPLE_STRATEGIES = ("sequential", "random")


class CheckStatus(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify_score(score: float) -> OutcomeStatus:
    """Map a 0-100 score to the tri-state outcome."""
    if score >= SUCCESS_THRESHOLD:
        return OutcomeStatus.SUCCESS
    if score >= PARTIAL_SUCCESS_THRESHOLD:
        return OutcomeStatus.PARTIAL_SUCCESS
    return OutcomeStatus.FAILED


def phase_status(succeeded: int, failed: int) -> OutcomeStatus:
    """
    Outcome of a phase or step from its counts, on the same scale as the
    readiness score. A step with nothing to do is a success.
    """
    total = succeeded + failed
    if total == 0:
        return OutcomeStatus.SUCCESS
    return classify_score(succeeded / total * 100)


def _rate(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


@dataclass
class ValidationCheck:
    """One weighted check and the points it earned."""
    name: str
    status: CheckStatus
    message: str
    score: int
    max_score: int
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "score": self.score,
            "max_score": self.max_score,
            "details": self.details,
        }


@dataclass
class ScoringInputs:
    """Upstream reports, as persisted by the media steps."""
    inventory: Optional[Dict[str, Any]] = None
    mapping_validation: Optional[Dict[str, Any]] = None
    upload_reports: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    record_report: Optional[Dict[str, Any]] = None

    # Categories whose upload report must exist for the pipeline to count as complete
    required_uploads: Tuple[str, ...] = ("profile", "service")

    @property
    def missing_reports(self) -> List[str]:
        missing = []
        if not self.inventory:
            missing.append("inventory")
        if not self.mapping_validation:
            missing.append("mapping validation")
        for category in self.required_uploads:
            if not self.upload_reports.get(category):
                missing.append(f"{category} uploads")
        if not self.record_report:
            missing.append("record creation")
        return missing

    def upload_totals(self) -> Dict[str, int]:
        totals = {"total": 0, "successful": 0, "original_size": 0, "compressed_size": 0, "size_saved": 0}
        for report in self.upload_reports.values():
            stats = report.get("stats", {})
            totals["total"] += stats.get("total_files", 0)
            totals["successful"] += stats.get("successful_uploads", 0)
            totals["original_size"] += stats.get("total_original_size", 0)
            totals["compressed_size"] += stats.get("total_compressed_size", 0)
            totals["size_saved"] += stats.get("total_size_saved", 0)
        return totals

    def successful_uploads(self) -> Dict[str, List[Dict[str, Any]]]:
        """Successful upload entries grouped by category, in report order."""
        grouped = {}
        for category, report in self.upload_reports.items():
            grouped[category] = [u for u in report.get("uploads", []) if u.get("success")]
        return grouped


@dataclass
class ReadinessReport:
    """Final readiness verdict for the media migration."""
    overall_score: int
    migration_status: OutcomeStatus
    checks: List[ValidationCheck]
    summary: Dict[str, Any]
    storage_validation: Dict[str, Any]
    database_validation: Dict[str, Any]
    business_logic_validation: Dict[str, Any]
    compression_benefits: Dict[str, Any]
    recommendations: List[str]
    rollback_information: Dict[str, Any]
    validated_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validated_at": self.validated_at,
            "migration_status": self.migration_status.value,
            "overall_score": self.overall_score,
            "summary": self.summary,
            "validation_checks": [c.to_dict() for c in self.checks],
            "storage_validation": self.storage_validation,
            "database_validation": self.database_validation,
            "business_logic_validation": self.business_logic_validation,
            "compression_benefits": self.compression_benefits,
            "recommendations": self.recommendations,
            "rollback_information": self.rollback_information,
        }


class MigrationScorer:
    """
    Scores a finished media migration.

    Storage accessibility is measured on a bounded sample of successful
    uploads rather than the full set. Every sampled object is checked
    against the storage client; without a client the check earns nothing.
    """

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        sample_size: int = 20,
        sample_strategy: str = "sequential",
        per_category_sample: Optional[int] = 10,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the scorer.

        Args:
            storage: Object storage used for the accessibility sample
            sample_size: Maximum number of objects checked overall
            sample_strategy: "sequential" (first uploads) or "random"
            per_category_sample: Maximum objects checked per category (None for no cap)
            rng: Random source for the "random" strategy
            logger: Logger for scoring messages
        """
        if sample_strategy not in SAMPLE_STRATEGIES:
            raise ValueError(f"Unknown sample strategy: {sample_strategy}")
        self.storage = storage
        self.sample_size = sample_size
        self.sample_strategy = sample_strategy
        self.per_category_sample = per_category_sample
        self._rng = rng or random.Random()
        self.logger = logger or logging.getLogger(__name__)

    def _pick(self, entries: List[Dict[str, Any]], limit: Optional[int]) -> List[Dict[str, Any]]:
        if limit is None or len(entries) <= limit:
            return list(entries)
        if self.sample_strategy == "random":
            return self._rng.sample(entries, limit)
        return entries[:limit]

    def select_sample(self, inputs: ScoringInputs) -> List[Dict[str, Any]]:
        """Choose the uploads whose objects will be checked in storage."""
        sample = []
        for entries in inputs.successful_uploads().values():
            sample.extend(self._pick(entries, self.per_category_sample))
        return self._pick(sample, self.sample_size)

    def check_storage(self, inputs: ScoringInputs) -> Dict[str, Any]:
        sample = self.select_sample(inputs)
        accessible = 0
        discrepancies = 0
        failures = []

        for entry in sample:
            if self.storage is None:
                failures.append({"path": entry.get("storage_path"), "error": "No storage client configured"})
                continue
            expected = (entry.get("compression_stats") or {}).get("compressed_size")
            result = self.storage.verify(entry.get("bucket"), entry.get("storage_path"), expected)
            if result["exists"]:
                accessible += 1
                if result["error"]:
                    discrepancies += 1
            else:
                failures.append({"path": entry.get("storage_path"), "error": result["error"]})

        return {
            "checked_files": len(sample),
            "accessible_files": accessible,
            "inaccessible_files": len(sample) - accessible,
            "size_discrepancies": discrepancies,
            "failures": failures,
        }

    def score(self, inputs: ScoringInputs) -> ReadinessReport:
        """Run every check and build the readiness report."""
        checks: List[ValidationCheck] = []
        totals = inputs.upload_totals()
        records = inputs.record_report or {}

        # Pipeline completion
        missing = inputs.missing_reports
        if not missing:
            checks.append(ValidationCheck(
                "Pipeline Completion", CheckStatus.PASSED,
                "All migration steps completed", PIPELINE_WEIGHT, PIPELINE_WEIGHT,
            ))
        else:
            checks.append(ValidationCheck(
                "Pipeline Completion", CheckStatus.FAILED,
                f"Missing reports: {', '.join(missing)}", 0, PIPELINE_WEIGHT,
                {"missing": missing},
            ))

        # Upload success rate
        upload_rate = _rate(totals["successful"], totals["total"])
        if upload_rate >= PASSED_RATE:
            status, wording = CheckStatus.PASSED, "Excellent"
        elif upload_rate >= UPLOAD_WARNING_RATE:
            status, wording = CheckStatus.WARNING, "Good"
        else:
            status, wording = CheckStatus.FAILED, "Poor"
        checks.append(ValidationCheck(
            "Upload Success Rate", status,
            f"{wording} upload success rate: {upload_rate:.1f}%",
            min(UPLOAD_WEIGHT, round_half_up(upload_rate / 100 * UPLOAD_WEIGHT)), UPLOAD_WEIGHT,
            {"success_rate": upload_rate, "successful": totals["successful"], "total": totals["total"]},
        ))

        # Record success rate
        record_total = records.get("total_records", 0)
        record_ok = records.get("successful_records", 0)
        record_rate = _rate(record_ok, record_total)
        checks.append(ValidationCheck(
            "Database Record Creation",
            CheckStatus.PASSED if record_rate >= PASSED_RATE else CheckStatus.FAILED,
            f"Record creation rate: {record_rate:.1f}%",
            min(RECORD_WEIGHT, round_half_up(record_rate / 100 * RECORD_WEIGHT)), RECORD_WEIGHT,
            {"success_rate": record_rate, "successful": record_ok, "total": record_total},
        ))

        # Storage accessibility
        storage = self.check_storage(inputs)
        storage_rate = _rate(storage["accessible_files"], storage["checked_files"])
        checks.append(ValidationCheck(
            "Storage Accessibility",
            CheckStatus.PASSED if storage_rate >= PASSED_RATE else CheckStatus.WARNING,
            f"Storage files accessible: {storage_rate:.1f}% of {storage['checked_files']} sampled",
            min(STORAGE_WEIGHT, round_half_up(storage_rate / 100 * STORAGE_WEIGHT)), STORAGE_WEIGHT,
            {"accessible": storage["accessible_files"], "total": storage["checked_files"]},
        ))

        # Business logic: one preview per service
        total_services = records.get("total_services", 0)
        with_preview = min(records.get("services_with_preview", 0), total_services)
        duplicates = records.get("duplicate_preview_images", 0)
        if with_preview == total_services and not duplicates:
            business_score = BUSINESS_LOGIC_WEIGHT
            status = CheckStatus.PASSED
            message = "All services have exactly one preview image"
        else:
            coverage = with_preview / total_services if total_services else 0.0
            business_score = min(BUSINESS_LOGIC_WEIGHT, round_half_up(coverage * BUSINESS_LOGIC_WEIGHT))
            status = CheckStatus.WARNING
            message = f"{with_preview}/{total_services} services have preview images"
            if duplicates:
                message += f", {duplicates} with more than one"
        checks.append(ValidationCheck(
            "Business Logic", status, message, business_score, BUSINESS_LOGIC_WEIGHT,
            {"services_with_preview": with_preview, "total_services": total_services,
             "duplicate_preview_images": duplicates},
        ))

        # Compression effectiveness
        compression_ratio = _rate(totals["size_saved"], totals["original_size"])
        if compression_ratio >= COMPRESSION_PASSED_RATIO:
            status, wording = CheckStatus.PASSED, "Excellent"
        elif compression_ratio >= COMPRESSION_WARNING_RATIO:
            status, wording = CheckStatus.WARNING, "Good"
        else:
            status, wording = CheckStatus.FAILED, "Poor"
        checks.append(ValidationCheck(
            "Compression Effectiveness", status,
            f"{wording} compression: {compression_ratio:.1f}% size reduction",
            max(0, min(COMPRESSION_WEIGHT, round_half_up(compression_ratio / COMPRESSION_POINT_DIVISOR))),
            COMPRESSION_WEIGHT,
            {"compression_ratio": compression_ratio, "size_saved": totals["size_saved"],
             "original_size": totals["original_size"]},
        ))

        overall = sum(c.score for c in checks)
        migration_status = classify_score(overall)

        recommendations = []
        if upload_rate < PASSED_RATE:
            recommendations.append("Review failed uploads and retry if possible")
        if record_rate < PASSED_RATE:
            recommendations.append("Investigate database record creation failures")
        if storage_rate < PASSED_RATE:
            recommendations.append("Verify storage bucket configuration and permissions")
        if compression_ratio < COMPRESSION_RECOMMEND_RATIO:
            recommendations.append("Review compression settings for better storage efficiency")
        if with_preview < total_services or duplicates:
            recommendations.append("Ensure every service has exactly one preview image")
        if missing:
            recommendations.append(f"Re-run the incomplete steps: {', '.join(missing)}")
        if not recommendations:
            recommendations = [
                "Migration completed successfully - no action required",
                "Monitor application performance and user feedback",
                "Consider archiving the legacy media backup after the validation period",
            ]

        inventory = inputs.inventory or {}
        report = ReadinessReport(
            overall_score=overall,
            migration_status=migration_status,
            checks=checks,
            summary={
                "total_files_scanned": inventory.get("total_files", 0),
                "total_files_migrated": totals["successful"],
                "total_records_created": record_ok,
                "total_original_size": totals["original_size"],
                "total_compressed_size": totals["compressed_size"],
                "total_size_saved": totals["size_saved"],
                "compression_ratio": compression_ratio,
                "success_rate": upload_rate,
            },
            storage_validation={k: v for k, v in storage.items() if k != "failures"},
            database_validation={
                "total_media_records": record_ok,
                "failed_records": records.get("failed_records", 0),
                "records_by_type": records.get("records_by_type", {}),
                "preview_images_set": with_preview,
            },
            business_logic_validation={
                "services_with_preview": with_preview,
                "services_without_preview": total_services - with_preview,
                "duplicate_preview_images": duplicates,
                "profiles_with_avatars": len(inputs.successful_uploads().get("profile", [])),
            },
            compression_benefits={
                "storage_reduction": compression_ratio,
                "estimated_monthly_savings": totals["size_saved"] / GIGABYTE * STORAGE_COST_PER_GB,
                "bandwidth_savings": totals["size_saved"],
                "performance_improvement": compression_ratio * LOAD_TIME_FACTOR,
            },
            recommendations=recommendations,
            rollback_information={
                "can_rollback": True,
                "storage_cleanup_required": totals["successful"] > 0,
                "database_cleanup_required": record_ok > 0,
                "estimated_rollback_time": "30-60 minutes",
            },
        )

        self.logger.info(f"Readiness score {overall}/100: {migration_status.label}")
        return report
