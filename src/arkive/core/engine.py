"""Top-level backup and restore operations.

Each public operation runs single-threaded to completion and returns an
``OperationResult``; errors raised by the components are converted here, so
callers never consult shared error state. Operations that write into a
destination directory hold its lock for their whole duration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from arkive.core.changes import select_changes
from arkive.core.config import DEFAULTS, _deep_merge
from arkive.core.copier import copy_files
from arkive.core.enumerator import enumerate_files
from arkive.core.errors import (
    ArkiveError,
    BaselineNotFound,
    ErrorKind,
    ExternalJobFailed,
    InvalidArgument,
    ManifestNotFound,
    OperationCancelled,
    SourceNotFound,
)
from arkive.core.fileutil import destination_lock
from arkive.core.imager import find_image, image_device, image_name
from arkive.core.jobs import JobHandle, JobOutcome, JobStatus, Submission, supervise
from arkive.core.manifest import (
    ENGINE_FILES,
    backup_info,
    list_backup_contents,
    read_manifest,
    verify_backup,
    write_manifest,
)
from arkive.core.metadata import MetadataStore
from arkive.core.models import (
    BackupManifest,
    BackupType,
    CancelToken,
    CopyResult,
    ImageDirection,
    JobState,
    MetadataIndex,
    OperationResult,
    OverwritePolicy,
    Status,
)
from arkive.core.progress import ProgressTracker, Stage
from arkive.providers.registry import registry
from arkive.providers.snapshot.base import SnapshotProvider
from arkive.providers.systemstate.base import SystemStateTool
from arkive.providers.virtualization.base import ExportOptions, ImportOptions, VirtualizationManager

log = logging.getLogger(__name__)

Reporter = Callable[[int, str], None]

SCAN_STAGE = Stage(0, 10)
COPY_STAGE = Stage(10, 85)
SNAPSHOT_STAGE = Stage(0, 10)
IMAGE_STAGE = Stage(10, 85)
JOB_STAGE = Stage(10, 85)


def _require(**params: object) -> None:
    for name, value in params.items():
        if value is None or str(value) == "":
            raise InvalidArgument(f"{name} is required")


class BackupEngine:
    """Backup and restore orchestration for files, block devices and VMs."""

    def __init__(
        self,
        config: dict | None = None,
        metadata_store: MetadataStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = _deep_merge(DEFAULTS, config or {})
        self.metadata = metadata_store or MetadataStore()
        self._sleep = sleep

    # --- File backups ---

    def backup_files(
        self,
        source: Path | str,
        dest: Path | str,
        mode: BackupType = BackupType.FULL,
        baseline: Path | str | None = None,
        policy: OverwritePolicy = OverwritePolicy.OVERWRITE,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Full, incremental or differential backup of a file or directory tree.

        ``baseline`` is the previous backup directory for incremental runs, or
        any backup of the chain for differential runs (its full backup is
        used). Without a usable baseline the run becomes a full backup.
        """
        if mode not in (BackupType.FULL, BackupType.INCREMENTAL, BackupType.DIFFERENTIAL):
            return self._invalid(f"Unsupported file backup mode: {mode.value}")

        def check() -> None:
            _require(source=source, dest=dest)
            if not Path(source).exists():
                raise SourceNotFound(f"Source path does not exist: {source}")

        def body(tracker: ProgressTracker) -> OperationResult:
            label = mode.value.lower()
            tracker.report(0, f"Starting {label} backup...")
            return self._backup_tree(
                Path(source), Path(dest), mode, baseline, policy, tracker, cancel, str(Path(source).absolute()),
            )

        return self._run("backup", reporter, body, check=check, lock_dir=dest)

    def _backup_tree(
        self,
        source: Path,
        dest: Path,
        mode: BackupType,
        baseline: Path | str | None,
        policy: OverwritePolicy,
        tracker: ProgressTracker,
        cancel: CancelToken | None,
        manifest_source: str,
        manifest_type: BackupType | None = None,
    ) -> OperationResult:
        tracker.update(5, 10, SCAN_STAGE, "Scanning files...")
        enumeration = enumerate_files(source)

        base_index, base_dir, full_base = self._resolve_baseline(mode, baseline)
        effective = mode if base_index is not None else BackupType.FULL
        changes = select_changes(enumeration.records, base_index)

        tracker.update(
            10, 10, SCAN_STAGE,
            f"Backing up {len(changes)} of {len(enumeration.records)} files "
            f"({changes.total_size // (1024 * 1024)} MB)...",
        )
        copy = copy_files(
            changes.records,
            enumeration.root,
            dest,
            policy,
            tracker,
            cancel,
            COPY_STAGE,
            int(self.config["copy"]["chunk_size"]),
        )
        if copy.fatal_error is not None:
            raise copy.fatal_error

        tracker.report(95, "Saving backup metadata...")
        index = self._next_index(enumeration.records, enumeration.root, changes.records, copy, base_index)
        self.metadata.save(dest, index)

        manifest = BackupManifest(
            source=manifest_source,
            destination=str(dest.absolute()),
            backup_type=manifest_type or effective,
            file_count=copy.files_copied,
            total_size=copy.bytes_copied,
            files_skipped=copy.files_skipped,
            baseline=base_dir,
            full_baseline=full_base,
            files=copy.copied,
        )
        write_manifest(dest, manifest, self.config["manifest"]["encoding"])
        return self._copy_outcome("Backup", copy, dest)

    @staticmethod
    def _next_index(records, root, selected, copy: CopyResult, base_index: MetadataIndex | None) -> MetadataIndex:
        """Index for the finished run.

        Files selected but not copied keep their baseline entry (or none), so
        the next incremental run retries them.
        """
        copied = set(copy.copied)
        missed = {r.path for r in selected if r.relative_path not in copied}
        kept = []
        for record in records:
            if record.path not in missed:
                kept.append(record)
            elif base_index is not None and record.path in base_index:
                kept.append(base_index[record.path])
        return MetadataIndex.from_records(kept, root)

    def _resolve_baseline(
        self, mode: BackupType, baseline: Path | str | None,
    ) -> tuple[MetadataIndex | None, str, str]:
        """Pick the baseline index for ``mode``.

        Returns (index, baseline dir, full baseline dir). Incremental runs diff
        against ``baseline`` itself; differential runs against the full backup
        it descends from.
        """
        if mode is BackupType.FULL:
            return None, "", ""
        if not baseline:
            log.warning("%s backup without a baseline, running a full backup", mode.value)
            return None, "", ""

        baseline_dir = Path(baseline).absolute()
        try:
            previous = read_manifest(baseline_dir)
        except ManifestNotFound:
            previous = None

        if previous is None or previous.backup_type is BackupType.FULL:
            full_dir = baseline_dir
        else:
            full_dir = Path(previous.full_baseline) if previous.full_baseline else baseline_dir

        index_dir = baseline_dir if mode is BackupType.INCREMENTAL else full_dir
        try:
            index = self.metadata.load(index_dir)
        except BaselineNotFound:
            log.warning("No metadata index in %s, running a full backup", index_dir)
            return None, "", ""

        return index, str(index_dir), str(full_dir)

    def restore_files(
        self,
        backup: Path | str,
        dest: Path | str,
        policy: OverwritePolicy = OverwritePolicy.OVERWRITE,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Copy the files of one backup directory into ``dest``."""

        def check() -> None:
            _require(backup=backup, dest=dest)
            if not Path(backup).exists():
                raise SourceNotFound(f"Backup path does not exist: {backup}")

        def body(tracker: ProgressTracker) -> OperationResult:
            tracker.report(0, "Starting file restore...")
            tracker.update(5, 10, SCAN_STAGE, "Scanning backup files...")
            enumeration = enumerate_files(backup, exclude=ENGINE_FILES)
            if not enumeration.records:
                raise SourceNotFound(f"No files found in backup: {backup}")

            copy = copy_files(
                enumeration.records,
                enumeration.root,
                dest,
                policy,
                tracker,
                cancel,
                COPY_STAGE,
                int(self.config["copy"]["chunk_size"]),
            )
            if copy.fatal_error is not None:
                raise copy.fatal_error

            tracker.report(95, "Verifying restore...")
            dest_path = Path(dest)
            for rel in copy.copied:
                if not (dest_path / rel).exists():
                    copy.failures.append(f"Missing after restore: {rel}")
            return self._copy_outcome("Restore", copy, dest_path)

        return self._run("restore", reporter, body, check=check, lock_dir=dest)

    # --- Queries ---

    def verify_backup(self, backup: Path | str, reporter: Reporter | None = None) -> OperationResult:
        """Read-back presence check of every file in a backup."""

        def check() -> None:
            _require(backup=backup)

        def body(tracker: ProgressTracker) -> OperationResult:
            problems = verify_backup(Path(backup), tracker)
            if problems:
                return OperationResult(
                    status=Status.FAILED,
                    error_kind=ErrorKind.CORRUPT,
                    message=f"Verification failed: {len(problems)} file(s) missing or unreadable",
                    failures=problems,
                    destination=str(backup),
                )
            return OperationResult(
                status=Status.OK, message="Backup verification completed successfully", destination=str(backup),
            )

        return self._run("verify", reporter, body, check=check)

    def backup_info(self, backup: Path | str) -> BackupManifest:
        _require(backup=backup)
        return backup_info(Path(backup))

    def list_backup_contents(self, backup: Path | str) -> list[str]:
        _require(backup=backup)
        return list_backup_contents(Path(backup))

    # --- Volumes and raw devices ---

    def backup_volume(
        self,
        volume: str,
        dest: Path | str,
        snapshot_provider: SnapshotProvider | None = None,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Snapshot a volume, copy its files, then release the snapshot."""

        def check() -> None:
            _require(volume=volume, dest=dest)

        def body(tracker: ProgressTracker) -> OperationResult:
            provider = snapshot_provider
            if provider is None:
                provider = self._provider("snapshot", self.config["snapshot"]["provider"], "snapshot")
            tracker.report(0, "Starting volume backup...")
            outcome = self._supervise(
                lambda: provider.create_snapshot(volume),
                provider.poll,
                tracker,
                cancel,
                SNAPSHOT_STAGE,
                "Snapshot",
            )
            self._raise_for_outcome(outcome, "Snapshot creation")
            snapshot_path = str(outcome.value or volume)
            try:
                return self._backup_tree(
                    Path(snapshot_path), Path(dest), BackupType.FULL, None, OverwritePolicy.OVERWRITE,
                    tracker, cancel, volume, BackupType.VOLUME,
                )
            finally:
                if not provider.delete_snapshot(snapshot_path):
                    log.warning("Failed to delete snapshot %s", snapshot_path)

        return self._run("volume backup", reporter, body, check=check, lock_dir=dest)

    def backup_disk(
        self,
        device: Path | str,
        dest: Path | str,
        name: str | None = None,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Image a raw block device into ``dest/disk_<name>.img``."""

        def check() -> None:
            _require(device=device, dest=dest)
            if not Path(device).exists():
                raise SourceNotFound(f"Device does not exist: {device}")

        def body(tracker: ProgressTracker) -> OperationResult:
            tracker.report(0, "Starting disk backup...")
            image = Path(dest) / image_name(name or Path(device).name)
            result = image_device(
                ImageDirection.READ, device, image, tracker,
                int(self.config["imaging"]["chunk_size"]), cancel, IMAGE_STAGE,
            )
            tracker.report(95, "Saving backup information...")
            write_manifest(
                Path(dest),
                BackupManifest(
                    source=str(device),
                    destination=str(Path(dest).absolute()),
                    backup_type=BackupType.DISK,
                    file_count=1,
                    total_size=result.bytes_transferred,
                    files=[image.name],
                ),
                self.config["manifest"]["encoding"],
            )
            return OperationResult(
                status=Status.OK,
                message=f"Disk backup completed successfully: {result.bytes_transferred} bytes",
                files_copied=1,
                bytes_transferred=result.bytes_transferred,
                destination=str(image),
            )

        return self._run("disk backup", reporter, body, check=check, lock_dir=dest)

    def restore_disk(
        self,
        backup: Path | str,
        device: Path | str,
        name: str | None = None,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Write a disk image from ``backup`` onto an existing device."""

        def check() -> None:
            _require(backup=backup, device=device)

        def body(tracker: ProgressTracker) -> OperationResult:
            tracker.report(0, "Starting disk restore...")
            image = find_image(Path(backup), name)
            result = image_device(
                ImageDirection.WRITE, device, image, tracker,
                int(self.config["imaging"]["chunk_size"]), cancel, IMAGE_STAGE,
            )
            return OperationResult(
                status=Status.OK,
                message=f"Disk restore completed successfully: {result.bytes_transferred} bytes",
                files_copied=1,
                bytes_transferred=result.bytes_transferred,
                destination=str(device),
            )

        return self._run("disk restore", reporter, body, check=check)

    # --- Virtual machines and system state ---

    def backup_vm(
        self,
        vm_id: str,
        dest: Path | str,
        manager: VirtualizationManager,
        options: ExportOptions | None = None,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Export a virtual machine definition and storage into ``dest``."""
        options = options or ExportOptions()

        def check() -> None:
            _require(vm_id=vm_id, dest=dest, manager=manager)

        def body(tracker: ProgressTracker) -> OperationResult:
            tracker.report(0, f"Exporting virtual machine {vm_id}...")
            outcome = self._supervise(
                lambda: manager.export_definition(vm_id, str(Path(dest).absolute()), options),
                manager.poll, tracker, cancel, JOB_STAGE, "Export",
            )
            self._raise_for_outcome(outcome, "Export")

            tracker.report(95, "Saving backup information...")
            exported = enumerate_files(dest, exclude=ENGINE_FILES)
            write_manifest(
                Path(dest),
                BackupManifest(
                    source=vm_id,
                    destination=str(Path(dest).absolute()),
                    backup_type=BackupType.VIRTUAL_MACHINE,
                    file_count=len(exported.records),
                    total_size=exported.total_size,
                    files=[r.relative_path for r in exported.records],
                ),
                self.config["manifest"]["encoding"],
            )
            return OperationResult(
                status=Status.OK,
                message=f"Virtual machine {vm_id} exported successfully",
                files_copied=len(exported.records),
                bytes_transferred=exported.total_size,
                destination=str(dest),
            )

        return self._run("vm backup", reporter, body, check=check, lock_dir=dest)

    def restore_vm(
        self,
        backup: Path | str,
        storage_dir: Path | str,
        manager: VirtualizationManager,
        options: ImportOptions | None = None,
        start_after: bool = False,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Import an exported virtual machine, optionally starting it afterwards."""
        options = options or ImportOptions()

        def check() -> None:
            _require(backup=backup, storage_dir=storage_dir, manager=manager)
            if not Path(backup).exists():
                raise SourceNotFound(f"Backup path does not exist: {backup}")

        def body(tracker: ProgressTracker) -> OperationResult:
            tracker.report(0, "Importing virtual machine...")
            outcome = self._supervise(
                lambda: manager.import_definition(str(backup), str(storage_dir), options),
                manager.poll, tracker, cancel, JOB_STAGE, "Import",
            )
            self._raise_for_outcome(outcome, "Import")

            result = OperationResult(
                status=Status.OK, message="Virtual machine imported successfully", destination=str(storage_dir),
            )
            if start_after:
                vm_id = options.vm_name or self._vm_id_from(backup)
                tracker.report(95, f"Starting virtual machine {vm_id}...")
                if not vm_id or not manager.start(vm_id):
                    result.status = Status.PARTIAL_FAILURE
                    result.error_kind = ErrorKind.PARTIAL_FAILURE
                    result.message = f"Virtual machine imported but failed to start: {vm_id}"
                    result.failures.append(result.message)
            return result

        return self._run("vm restore", reporter, body, check=check, lock_dir=storage_dir)

    @staticmethod
    def _vm_id_from(backup: Path | str) -> str:
        try:
            return read_manifest(Path(backup)).source
        except ManifestNotFound:
            return ""

    def restore_system_state(
        self,
        backup: Path | str,
        target_volume: str,
        tool: SystemStateTool | None = None,
        reporter: Reporter | None = None,
        cancel: CancelToken | None = None,
    ) -> OperationResult:
        """Run the external system-state tool and supervise it to completion."""

        def check() -> None:
            _require(backup=backup, target_volume=target_volume)

        def body(tracker: ProgressTracker) -> OperationResult:
            runner = tool if tool is not None else self._provider("systemstate", "process", "system_state")
            tracker.report(0, "Preparing system state restore...")
            outcome = self._supervise(
                lambda: runner.start_restore(str(backup), target_volume),
                runner.poll, tracker, cancel, JOB_STAGE, "System state restore",
                request_cancel=runner.terminate,
            )
            self._raise_for_outcome(outcome, "System state restore")
            return OperationResult(status=Status.OK, message="System state restore completed")

        return self._run("system state restore", reporter, body, check=check)

    # --- Plumbing ---

    def _provider(self, family: str, name: str, section: str):
        try:
            return registry.get(family, name, self.config[section])
        except KeyError as e:
            raise InvalidArgument(f"Unknown {family} provider: {name!r}") from e

    def _supervise(
        self,
        submit: Callable[[], Submission],
        poll: Callable[[JobHandle], JobStatus],
        tracker: ProgressTracker,
        cancel: CancelToken | None,
        stage: Stage,
        label: str,
        request_cancel: Callable[[JobHandle], None] | None = None,
    ) -> JobOutcome:
        jobs = self.config["jobs"]
        return supervise(
            submit,
            poll,
            poll_interval=float(jobs["poll_interval"]),
            reporter=tracker,
            deadline=jobs["deadline"],
            cancel=cancel,
            request_cancel=request_cancel,
            stage=stage,
            label=label,
            heartbeat_step=int(jobs["heartbeat_step"]),
            heartbeat_cap=int(jobs["heartbeat_cap"]),
            sleep=self._sleep,
        )

    @staticmethod
    def _raise_for_outcome(outcome: JobOutcome, what: str) -> None:
        if outcome.state is JobState.COMPLETED:
            return
        if outcome.state is JobState.CANCELLED:
            raise OperationCancelled(f"{what} cancelled")
        detail = outcome.message or "no details reported"
        code = f" (code {outcome.error_code})" if outcome.error_code is not None else ""
        raise ExternalJobFailed(f"{what} failed{code}: {detail}", outcome.error_code)

    @staticmethod
    def _copy_outcome(verb: str, copy: CopyResult, dest: Path) -> OperationResult:
        if copy.failures:
            status = Status.PARTIAL_FAILURE
            kind = ErrorKind.PARTIAL_FAILURE
            message = (
                f"{verb} completed with problems: {copy.files_copied} files copied, "
                f"{copy.files_skipped} skipped"
            )
        else:
            status = Status.OK
            kind = None
            message = f"{verb} completed successfully: {copy.files_copied} files copied"
            if copy.files_skipped:
                message += f", {copy.files_skipped} already present"
        return OperationResult(
            status=status,
            message=message,
            error_kind=kind,
            files_copied=copy.files_copied,
            files_skipped=copy.files_skipped,
            bytes_transferred=copy.bytes_copied,
            failures=list(copy.failures),
            destination=str(dest),
        )

    @staticmethod
    def _invalid(message: str) -> OperationResult:
        return OperationResult(status=Status.FAILED, error_kind=ErrorKind.INVALID_ARGUMENT, message=message)

    def _run(
        self,
        operation: str,
        reporter: Reporter | None,
        body: Callable[[ProgressTracker], OperationResult],
        check: Callable[[], None] | None = None,
        lock_dir: Path | str | None = None,
    ) -> OperationResult:
        tracker = ProgressTracker(reporter)
        start = time.monotonic()
        try:
            if check is not None:
                check()
            if lock_dir is not None:
                with destination_lock(Path(lock_dir)):
                    result = body(tracker)
            else:
                result = body(tracker)
        except OperationCancelled as e:
            log.info("%s cancelled: %s", operation, e)
            tracker.fail(str(e))
            result = OperationResult(status=Status.CANCELLED, error_kind=e.kind, message=str(e))
        except ArkiveError as e:
            log.error("%s failed: %s", operation, e)
            tracker.fail(str(e))
            result = OperationResult(status=Status.FAILED, error_kind=e.kind, message=str(e))
        except Exception as e:
            log.error("Unexpected error during %s", operation, exc_info=True)
            message = f"Unexpected error during {operation}: {type(e).__name__}: {e}"
            tracker.fail(message)
            result = OperationResult(status=Status.FAILED, error_kind=ErrorKind.UNKNOWN, message=message)
        else:
            if result.success:
                tracker.report(100, result.message)
            else:
                tracker.fail(result.message)

        result.duration_seconds = time.monotonic() - start
        return result
