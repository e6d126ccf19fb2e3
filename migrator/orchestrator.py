"""Phase orchestrator - sequences checkpointed migration steps."""

import logging
from typing import Any, Callable, Dict, List, Optional

from .extractors.dump_extractor import DumpExtractor
from .loaders.base import ObjectStorage, TargetStore
from .loaders.batch_writer import DatabaseBatchAdapter
from .loaders.supabase_loader import SupabaseStorage, SupabaseStore
from .media.compressor import ImageCompressor
from .media.migrator import MappingResolution, MediaInventory, MediaMigrator
from .media.records import MediaRecordCreator, build_records_report
from .media.uploader import StorageUploader
from .models.batch import BatchOptions, DatabaseBatchOptions, OperationType
from .models.media import MediaCategory, MigratedAsset
from .models.migration import (
    ConfigurationError,
    MigrationConfig,
    MigrationStatus,
    MigrationStep,
    PhaseRun,
    utcnow,
)
from .models.record import ConsolidatedIdentity, Role
from .services.batch_processor import BatchProcessor, get_optimal_batch_size, log_progress, log_stats
from .services.checkpoint import CheckpointNotFoundError, CheckpointStore, FileCheckpointStore
from .services.deduplicator import UserDeduplicator
from .services.scorer import CheckStatus, MigrationScorer, ReadinessReport, ScoringInputs, phase_status
from .services.validator import IdentityValidator

logger = logging.getLogger(__name__)

PHASE_NAMES = {
    1: "User migration",
    8: "Media migration",
}

UPLOAD_CHECKPOINTS = {
    MediaCategory.PROFILE: "profile-images-migrated",
    MediaCategory.SERVICE: "service-images-migrated",
    MediaCategory.CHAT: "chat-images-migrated",
}

# Source records with errors on these fields never reach deduplication
BLOCKING_FIELDS = ("id", "email")

EMAIL_EXISTS_REASON = "Email already exists in Supabase"


class PhaseFailedError(Exception):
    """A step could not produce any output, so the phase stops."""

    def __init__(self, message: str, run: Optional[PhaseRun] = None):
        super().__init__(message)
        self.run = run


def service_mapping_from(payload: Any) -> Dict[str, Dict[str, Any]]:
    """Legacy service id -> new service id and owning stylist, from ``services-created``."""
    services = payload.get("services", []) if isinstance(payload, dict) else payload or []
    return {
        s["old_service_id"]: {"new_service_id": s["new_service_id"], "stylist_id": s.get("stylist_id")}
        for s in services
        if s.get("success", True) and s.get("old_service_id") and s.get("new_service_id")
    }


def message_mapping_from(payload: Any) -> Dict[str, Dict[str, Any]]:
    """Legacy image message id -> new message, chat and sender, from ``chats-created``."""
    if not isinstance(payload, dict):
        return {}
    mapping = {}
    for legacy_id, entry in (payload.get("image_message_mapping") or {}).items():
        mapping[str(entry.get("mysql_message_id", legacy_id))] = {
            "processed_message_id": entry.get("processed_message_id"),
            "processed_chat_id": entry.get("processed_chat_id"),
            "sender_id": entry.get("sender_id"),
        }
    return mapping


def load_scoring_inputs(checkpoints: CheckpointStore) -> ScoringInputs:
    """Collect every upstream media report that exists."""
    def optional(key: str) -> Optional[Any]:
        return checkpoints.load_payload(key) if checkpoints.exists(key) else None

    uploads = {}
    for category, key in UPLOAD_CHECKPOINTS.items():
        report = optional(key)
        if report is not None:
            uploads[category.value] = report

    return ScoringInputs(
        inventory=optional("media-inventory"),
        mapping_validation=optional("mapping-validation-results"),
        upload_reports=uploads,
        record_report=optional("media-records-created"),
    )


class PhaseOrchestrator:
    """
    Runs numbered migration phases as sequences of checkpointed steps.

    Each step loads its inputs from the checkpoint store once, writes its
    output once, and is recorded as a MigrationStep on the phase run. A step
    that creates nothing while reporting failures stops the phase with
    PhaseFailedError; partial success is recorded and the phase continues.
    """

    def __init__(
        self,
        config: MigrationConfig,
        checkpoints: Optional[CheckpointStore] = None,
        store: Optional[TargetStore] = None,
        storage: Optional[ObjectStorage] = None,
        processor: Optional[BatchProcessor] = None,
        compressor: Optional[ImageCompressor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            checkpoints: Checkpoint store (a file store under config.checkpoint_dir by default)
            store: Target store client (Supabase when omitted and not a dry run)
            storage: Object storage client (Supabase when omitted and not a dry run)
            processor: Batch processor shared by every step
            compressor: Image compressor for media uploads
            logger: Logger for step progress and summaries
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.checkpoints = checkpoints or FileCheckpointStore(config.checkpoint_dir)
        self.processor = processor or BatchProcessor(logger=self.logger)
        self.store = store
        self.storage = storage
        self.compressor = compressor

        if not config.dry_run and config.supabase_url and config.service_role_key:
            if self.store is None:
                self.store = SupabaseStore(config.supabase_url, config.service_role_key, config.request_timeout)
            if self.storage is None:
                self.storage = SupabaseStorage(config.supabase_url, config.service_role_key, config.request_timeout)

        self.adapter = DatabaseBatchAdapter(self.store, self.processor, self.logger, dry_run=config.dry_run)
        self.deduplicator = UserDeduplicator(self.logger)
        self.validator = IdentityValidator(self.logger)

    # ------------------------------------------------------------------
    # Phase runner
    # ------------------------------------------------------------------

    def run_phase(self, phase: int) -> PhaseRun:
        """
        Run one phase end to end.

        Raises:
            ConfigurationError: missing credentials, paths or connectivity
            CheckpointNotFoundError: a required upstream checkpoint is missing
            PhaseFailedError: a step failed unrecoverably
        """
        steps = {1: self._phase_1_steps, 8: self._phase_8_steps}.get(phase)
        if steps is None:
            raise ConfigurationError(f"Unsupported phase: {phase}")

        self._preflight()

        run = PhaseRun(phase=phase, name=PHASE_NAMES[phase], dry_run=self.config.dry_run)
        run.started_at = utcnow()
        run.status = MigrationStatus.RUNNING
        self.logger.info(f"=== PHASE {phase}: {run.name.upper()} ===")

        try:
            for name, entity, func in steps():
                self._run_step(run, name, entity, func)
            run.status = MigrationStatus.COMPLETED

        except Exception as e:
            run.status = MigrationStatus.FAILED
            run.errors.append({"step": run.current_step, "error": str(e), "timestamp": utcnow().isoformat()})
            if isinstance(e, PhaseFailedError):
                e.run = run
            raise

        finally:
            run.completed_at = utcnow()
            run.update_totals()
            run.outcome = phase_status(run.total_records_succeeded, run.total_records_failed)
            self.checkpoints.save(f"phase-{phase}-stats", run.to_dict())
            self._print_summary(run)

        return run

    def _preflight(self) -> None:
        if self.config.dry_run:
            problems = self.config.validate()
            if problems:
                raise ConfigurationError("; ".join(problems))
            return

        self.config.require_remote()
        if self.store is not None and not self.store.test_connection():
            raise ConfigurationError("Failed to connect to the target store")

    def _run_step(self, run: PhaseRun, name: str, entity: str, func: Callable[[MigrationStep], None]) -> None:
        step = run.add_step(name=name, entity=entity)
        step.status = MigrationStatus.RUNNING
        step.started_at = utcnow()
        run.current_step = step.name
        self.logger.info(f"--- {name} ---")

        try:
            func(step)
            if step.outcome is None:
                step.outcome = phase_status(step.records_succeeded + step.records_skipped, step.records_failed)
            if step.records_succeeded + step.records_skipped == 0 and step.records_failed > 0:
                raise PhaseFailedError(f"{name}: nothing was created and {step.records_failed} records failed")
            step.status = MigrationStatus.COMPLETED
            self.logger.info(
                f"{name}: {step.records_succeeded} succeeded, {step.records_failed} failed, "
                f"{step.records_skipped} skipped"
            )

        except (PhaseFailedError, ConfigurationError, CheckpointNotFoundError):
            step.status = MigrationStatus.FAILED
            raise

        except Exception as e:
            step.status = MigrationStatus.FAILED
            step.errors.append({"error": str(e)})
            self.logger.error(f"{name} failed: {e}")
            raise PhaseFailedError(f"{name} failed: {e}") from e

        finally:
            step.completed_at = utcnow()

    def _print_summary(self, run: PhaseRun) -> None:
        print("\n" + "=" * 60)
        print(f"PHASE {run.phase} COMPLETE: {run.name}")
        print("=" * 60)
        print(f"Status: {run.outcome.label if run.outcome else run.status.value}")
        for step in run.steps:
            print(
                f"  {step.name}: {step.records_succeeded} ok, {step.records_failed} failed, "
                f"{step.records_skipped} skipped ({step.status.value})"
            )
        print(f"Records Processed: {run.total_records_processed}")
        print(f"Succeeded: {run.total_records_succeeded}")
        print(f"Failed: {run.total_records_failed}")
        if run.duration_seconds:
            print(f"Duration: {run.duration_seconds:.2f} seconds")

    def _database_options(self, operation: OperationType, count: int) -> DatabaseBatchOptions:
        return DatabaseBatchOptions(
            batch_size=self.config.batch_size or get_optimal_batch_size(operation, count),
            delay_between_batches=self.config.delay_between_batches,
            max_retries=self.config.max_retries,
            base_retry_delay=self.config.base_retry_delay,
            progress_callback=lambda current, total, number: log_progress(
                self.logger, operation.value, current, total
            ),
        )

    def _record_batch(self, step: MigrationStep, result, skipped: int = 0) -> None:
        step.records_processed = result.total_processed + skipped
        step.records_succeeded = result.success_count
        step.records_failed = result.error_count
        step.records_skipped = skipped
        step.errors.extend(f.to_dict() for f in result.failed)

    # ------------------------------------------------------------------
    # Phase 1: users
    # ------------------------------------------------------------------

    def _phase_1_steps(self):
        return [
            ("Extract and consolidate users", "users", self.extract_users),
            ("Create auth users", "auth_users", self.create_auth_users),
            ("Create profiles", "profiles", self.create_profiles),
            ("Create stylist details", "stylist_details", self.create_stylist_details),
            ("Create user preferences", "user_preferences", self.create_user_preferences),
        ]

    def extract_users(self, step: MigrationStep) -> None:
        extractor = DumpExtractor(self.config.dump_path)
        buyers = extractor.extract_buyers()
        stylists = extractor.extract_stylists()

        errors = self.validator.validate_buyers(buyers) + self.validator.validate_stylists(stylists)
        blocked = {(e.table, e.record_id) for e in errors if e.field in BLOCKING_FIELDS}

        def usable(record) -> bool:
            return bool(record.id) and (record.source_table.value, record.id) not in blocked

        valid_buyers = [b for b in buyers if usable(b)]
        valid_stylists = [s for s in stylists if usable(s)]

        conflicts = self.deduplicator.find_duplicate_emails(valid_buyers, valid_stylists)
        result = self.deduplicator.consolidate_users(valid_buyers, valid_stylists, conflicts)

        consolidated_errors = self.validator.validate_consolidated(result.identities)
        self.validator.assert_unique(consolidated_errors)

        self.checkpoints.save("users-extracted", {
            "buyers": len(buyers),
            "stylists": len(stylists),
            "extraction_errors": extractor.errors,
            "validation_errors": [e.to_dict() for e in errors],
            "validation_summary": self.validator.validation_summary(errors),
        })
        self.checkpoints.save(
            "duplicates", conflicts, {"resolutions": self.deduplicator.summarize_resolutions(conflicts)}
        )
        self.checkpoints.save("consolidated-users", result.identities, {
            "customers": result.customers,
            "stylists": result.stylists,
            "skipped": len(result.skipped),
            "validation_errors": len(consolidated_errors),
        })

        step.records_processed = len(buyers) + len(stylists)
        step.records_succeeded = len(result.identities)
        step.records_skipped = step.records_processed - step.records_succeeded
        step.errors.extend(e.to_dict() for e in errors + consolidated_errors)
        step.errors.extend(result.skipped)

        log_stats(self.logger, "User consolidation", {
            "Buyers": len(buyers),
            "Stylists": len(stylists),
            "Duplicate emails": len(conflicts),
            "Consolidated users": len(result.identities),
            "Customers": result.customers,
            "Stylists (consolidated)": result.stylists,
            "Validation errors": len(errors) + len(consolidated_errors),
        })

    def _load_identities(self) -> List[ConsolidatedIdentity]:
        return self.checkpoints.load_payload("consolidated-users", ConsolidatedIdentity.from_dict)

    def create_auth_users(self, step: MigrationStep) -> None:
        identities = self._load_identities()
        existing = {} if self.config.dry_run else self.store.list_auth_users()

        def create(identity: ConsolidatedIdentity) -> Dict[str, Any]:
            entry = {"original_id": identity.original_id, "email": identity.email, "role": identity.role.value}
            known_id = existing.get(identity.normalized_email)
            if known_id:
                self.logger.warning(f"Email already exists in Supabase: {identity.email}")
                entry.update({"supabase_user_id": known_id, "skipped": True, "skip_reason": EMAIL_EXISTS_REASON})
                return entry
            if self.config.dry_run:
                entry.update({"supabase_user_id": identity.id, "skipped": False})
                return entry

            metadata = {
                "full_name": identity.full_name,
                "phone_number": identity.phone_number,
                "role": identity.role.value,
                "migration_source": f"mysql_{identity.source_table.value}",
                "original_id": identity.original_id,
            }
            user_id = self.processor.retry_with_backoff(
                lambda: self.store.create_auth_user(identity.email, {k: v for k, v in metadata.items() if v}),
                max_retries=self.config.max_retries,
                base_delay=self.config.base_retry_delay,
                description=f"Create auth user {identity.email}",
            )
            entry.update({"supabase_user_id": user_id, "skipped": False})
            return entry

        options = BatchOptions(
            batch_size=self.config.batch_size or get_optimal_batch_size(OperationType.AUTH_USERS, len(identities)),
            delay_between_batches=self.config.delay_between_batches,
            max_retries=self.config.max_retries,
            base_retry_delay=self.config.base_retry_delay,
            progress_callback=lambda current, total, number: log_progress(self.logger, "auth users", current, total),
        )
        result = self.processor.process_batches_with_results(identities, create, options)

        mapping = {r["original_id"]: r["supabase_user_id"] for r in result.successful}
        skipped = sum(1 for r in result.successful if r["skipped"])

        self.checkpoints.save("auth-users-created", {
            "results": result.successful,
            "failed": [f.to_dict() for f in result.failed],
        }, {"created": len(result.successful) - skipped, "skipped": skipped, "failed": result.error_count})
        self.checkpoints.save("user-id-mapping", mapping, {"total_mappings": len(mapping)})

        step.records_processed = result.total_processed
        step.records_succeeded = len(result.successful) - skipped
        step.records_skipped = skipped
        step.records_failed = result.error_count
        step.errors.extend(f.to_dict() for f in result.failed)

    def _mapped(self, identities: List[ConsolidatedIdentity], mapping: Dict[str, str]):
        mapped = [(i, mapping[i.original_id]) for i in identities if i.original_id in mapping]
        return mapped, len(identities) - len(mapped)

    def _created_ids(self, key: str) -> set:
        return {row["id"] for row in self.checkpoints.load(key).payload.get("created", [])}

    def create_profiles(self, step: MigrationStep) -> None:
        identities = self._load_identities()
        mapping = self.checkpoints.load_payload("user-id-mapping")
        mapped, unmapped = self._mapped(identities, mapping)

        rows = [{
            "id": new_id,
            "full_name": identity.full_name,
            "email": identity.email,
            "phone_number": identity.phone_number,
            "bankid_verified": identity.bankid_verified,
            "role": identity.role.value,
            "stripe_customer_id": identity.stripe_customer_id,
            "created_at": identity.created_at,
            "updated_at": identity.updated_at,
        } for identity, new_id in mapped]

        result = self.adapter.insert_rows(
            "profiles", rows, OperationType.PROFILES, self._database_options(OperationType.PROFILES, len(rows))
        )
        self.checkpoints.save("profiles-created", {
            "created": [{"id": r.get("id"), "email": r.get("email"), "role": r.get("role")} for r in result.successful],
            "failed": [f.to_dict() for f in result.failed],
        }, {"created": result.success_count, "failed": result.error_count, "unmapped": unmapped})
        self._record_batch(step, result, skipped=unmapped)

    def create_stylist_details(self, step: MigrationStep) -> None:
        identities = [i for i in self._load_identities() if i.role is Role.STYLIST and i.stylist_details]
        mapping = self.checkpoints.load_payload("user-id-mapping")
        profiles = self._created_ids("profiles-created")
        mapped, _ = self._mapped(identities, mapping)
        mapped = [(i, new_id) for i, new_id in mapped if new_id in profiles]

        rows = []
        for identity, new_id in mapped:
            row = identity.stylist_details.to_dict()
            row.update({"profile_id": new_id, "created_at": identity.created_at, "updated_at": identity.updated_at})
            rows.append(row)

        result = self.adapter.insert_rows(
            "stylist_details", rows, OperationType.STYLIST_DETAILS,
            self._database_options(OperationType.STYLIST_DETAILS, len(rows)),
        )
        self.checkpoints.save("stylist-details-created", {
            "created": [{"profile_id": r.get("profile_id")} for r in result.successful],
            "failed": [f.to_dict() for f in result.failed],
        }, {"created": result.success_count, "failed": result.error_count})
        self._record_batch(step, result, skipped=len(identities) - len(mapped))

    def create_user_preferences(self, step: MigrationStep) -> None:
        identities = self._load_identities()
        mapping = self.checkpoints.load_payload("user-id-mapping")
        profiles = self._created_ids("profiles-created")
        mapped, _ = self._mapped(identities, mapping)
        mapped = [(i, new_id) for i, new_id in mapped if new_id in profiles]

        rows = []
        for identity, new_id in mapped:
            row = identity.preferences.to_dict()
            row.update({"user_id": new_id, "created_at": identity.created_at, "updated_at": identity.updated_at})
            rows.append(row)

        result = self.adapter.insert_rows(
            "user_preferences", rows, OperationType.USER_PREFERENCES,
            self._database_options(OperationType.USER_PREFERENCES, len(rows)),
        )
        self.checkpoints.save("user-preferences-created", {
            "created": [{"user_id": r.get("user_id")} for r in result.successful],
            "failed": [f.to_dict() for f in result.failed],
        }, {"created": result.success_count, "failed": result.error_count})
        self._record_batch(step, result, skipped=len(identities) - len(mapped))

    # ------------------------------------------------------------------
    # Phase 8: media
    # ------------------------------------------------------------------

    def _phase_8_steps(self):
        steps = [
            ("Extract media inventory", "media", self.extract_media_inventory),
            ("Validate media mappings", "media", self.validate_media_mappings),
        ]
        for category in MediaCategory:
            steps.append((
                f"Migrate {category.value} images",
                f"{category.value}_images",
                lambda step, category=category: self.migrate_media(step, category),
            ))
        steps.append(("Create media records", "media", self.create_media_records))
        steps.append(("Validate media migration", "media", self.validate_media_migration))
        return steps

    def build_media_migrator(self) -> MediaMigrator:
        compressor = self.compressor or ImageCompressor(command=self.config.compression_command, logger=self.logger)
        uploader = StorageUploader(
            self.storage,
            compressor,
            self.processor,
            self.logger,
            max_retries=self.config.max_retries,
            base_retry_delay=self.config.base_retry_delay,
        )
        return MediaMigrator(
            uploader,
            MediaRecordCreator(self.adapter, self.logger),
            self.logger,
            inventory_concurrency=self.config.inventory_concurrency,
            media_concurrency=self.config.media_concurrency,
        )

    def extract_media_inventory(self, step: MigrationStep) -> None:
        inventory = self.build_media_migrator().build_inventory(self.config.media_backup_path)
        self.checkpoints.save("media-inventory", inventory)

        migratable = len(inventory.migratable)
        step.records_processed = len(inventory.items) + len(inventory.errors)
        step.records_succeeded = migratable
        step.records_skipped = len(inventory.items) - migratable
        step.records_failed = len(inventory.errors)
        step.errors.extend(inventory.errors)

    def _optional_payload(self, key: str, default: Any) -> Any:
        if not self.checkpoints.exists(key):
            self.logger.warning(f"Checkpoint {key} not found, continuing without it")
            return default
        return self.checkpoints.load_payload(key)

    def validate_media_mappings(self, step: MigrationStep) -> None:
        inventory = MediaInventory.from_dict(self.checkpoints.load_payload("media-inventory"))
        user_mapping = self.checkpoints.load_payload("user-id-mapping")
        services = service_mapping_from(self._optional_payload("services-created", []))
        messages = message_mapping_from(self._optional_payload("chats-created", {}))

        resolution = self.build_media_migrator().resolve_targets(inventory, user_mapping, services, messages)
        self.checkpoints.save("mapping-validation-results", resolution)

        step.records_processed = resolution.total_validated
        step.records_succeeded = len(resolution.tasks)
        step.records_skipped = len(resolution.invalid)
        step.errors.extend(resolution.invalid)

    def migrate_media(self, step: MigrationStep, category: MediaCategory) -> None:
        resolution = MappingResolution.from_dict(self.checkpoints.load_payload("mapping-validation-results"))
        tasks = resolution.tasks_for(category)
        migrator = self.build_media_migrator()

        if self.config.dry_run:
            self.logger.info(f"[dry run] Would upload {len(tasks)} {category.value} images")
            migrated: List[MigratedAsset] = []
            step.records_skipped = len(tasks)
        else:
            migrated = migrator.migrate(tasks, label=f"{category.value} images")

        report = migrator.summarize(category, migrated)
        self.checkpoints.save(UPLOAD_CHECKPOINTS[category], report)

        step.records_processed = len(tasks)
        step.records_succeeded = report["successful_uploads"]
        step.records_failed = report["failed_uploads"]
        step.errors.extend(
            {"path": m.task.asset.original_path, "error": m.upload.error} for m in migrated if not m.upload.success
        )

    def _load_migrated(self) -> List[MigratedAsset]:
        migrated = []
        for key in UPLOAD_CHECKPOINTS.values():
            report = self._optional_payload(key, {})
            migrated.extend(MigratedAsset.from_dict(u) for u in report.get("uploads", []))
        return migrated

    def create_media_records(self, step: MigrationStep) -> None:
        migrated = self._load_migrated()
        results = self.build_media_migrator().create_records(migrated)
        report = build_records_report(migrated, results)
        self.checkpoints.save("media-records-created", report)

        step.records_processed = len(results)
        step.records_succeeded = report["successful_records"]
        step.records_failed = report["failed_records"]
        step.errors.extend({"error": e} for e in report["errors"])

    def scoring_inputs(self) -> ScoringInputs:
        return load_scoring_inputs(self.checkpoints)

    def score(self) -> ReadinessReport:
        """Score the media migration from its persisted reports."""
        scorer = MigrationScorer(
            storage=self.storage,
            sample_size=self.config.storage_sample_size,
            sample_strategy=self.config.storage_sample_strategy,
            logger=self.logger,
        )
        return scorer.score(self.scoring_inputs())

    def validate_media_migration(self, step: MigrationStep) -> None:
        report = self.score()
        self.checkpoints.save("media-migration-validation", report)

        step.records_processed = len(report.checks)
        step.records_succeeded = sum(1 for c in report.checks if c.status is not CheckStatus.FAILED)
        step.records_failed = len(report.checks) - step.records_succeeded
        step.warnings.extend(report.recommendations)
        step.outcome = report.migration_status
