"""Per-artifact orchestration: full runs, incremental updates and recovery."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import json
import os
import threading

from mclang_flow.documents.lang_map import FileFormat, read_mapping, write_mapping
from mclang_flow.pipelines.scheduler import BatchScheduler, translatable_units
from mclang_flow.utils.cancellation import CancellationToken
from mclang_flow.utils.log_protocol import NullObserver, PipelineObserver
from mclang_flow.utils.naming import get_target_filename

RAW_CONTENT_DIR = "raw_content"

STATUS_SKIPPED = "skipped"
STATUS_NOOP = "noop"
STATUS_PERSISTED = "persisted"
STATUS_CANCELLED = "cancelled"
STATUS_ERROR = "error"


class RunMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass
class LangArtifact:
    mod_id: str
    file_name: str
    fmt: FileFormat = FileFormat.JSON

    @property
    def artifact_id(self) -> str:
        return f"{self.mod_id}/{self.file_name}"


@dataclass
class ArtifactOutcome:
    artifact_id: str
    status: str
    output_path: Optional[str] = None
    pending: int = 0
    recovered: int = 0
    translated: int = 0
    dropped: int = 0
    message: str = ""


class IncrementalPipeline:
    """Decides what an artifact needs, runs it through the scheduler, persists.

    Life of one artifact::

        NotStarted -> Skipped | Resolving
        Resolving  -> NoOpComplete | Pending
        Pending    -> Scheduling -> Cancelled | Merged -> Persisted

    Nothing is written for Skipped, NoOpComplete or Cancelled.
    """

    def __init__(
        self,
        scheduler: BatchScheduler,
        *,
        output_root: str,
        source_lang: str = "en_us",
        target_lang: str = "zh_cn",
        chunk_size: Optional[int] = None,
        skip_existing: bool = True,
        network_limiter: Optional[threading.Semaphore] = None,
        observer: Optional[PipelineObserver] = None,
    ):
        self.scheduler = scheduler
        self.output_root = output_root
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.chunk_size = chunk_size
        self.skip_existing = skip_existing
        self.network_limiter = network_limiter
        self.observer = observer or NullObserver()

    def resolve_output_path(self, artifact: LangArtifact) -> str:
        target_name = get_target_filename(
            artifact.file_name, self.source_lang, self.target_lang
        )
        return os.path.join(self.output_root, "assets", artifact.mod_id, "lang", target_name)

    def raw_backup_path(self, artifact: LangArtifact) -> str:
        return os.path.join(
            self.output_root, RAW_CONTENT_DIR, f"{artifact.mod_id}_{artifact.file_name}"
        )

    @staticmethod
    def split_pending(
        source_mapping: Dict[str, Any],
        existing: Dict[str, Any],
        builtin: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any], int]:
        """Return ``(pending, base, recovered_count)`` for an incremental run.

        Keys already in ``existing`` stay as they are, keys found in
        ``builtin`` are copied into the base, everything else is pending.
        """
        builtin = builtin or {}
        base = dict(existing)
        pending: Dict[str, Any] = {}
        recovered = 0
        for key, value in source_mapping.items():
            if key in base:
                continue
            if key in builtin:
                base[key] = builtin[key]
                recovered += 1
            else:
                pending[key] = value
        return pending, base, recovered

    def _write_raw_backup(self, artifact: LangArtifact, pending: Dict[str, Any]) -> str:
        path = self.raw_backup_path(artifact)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(pending, f, ensure_ascii=False, indent=2)
        return path

    def run(
        self,
        source_mapping: Dict[str, Any],
        artifact: LangArtifact,
        builtin_recovery: Optional[Dict[str, Any]] = None,
        mode: RunMode = RunMode.FULL,
        cancel: Optional[CancellationToken] = None,
    ) -> ArtifactOutcome:
        cancel = cancel or CancellationToken()
        artifact_id = artifact.artifact_id
        final_path = self.resolve_output_path(artifact)
        existed = os.path.exists(final_path)

        if mode == RunMode.FULL and self.skip_existing and existed:
            self.observer.info(f"Skipping existing output: {final_path}")
            return ArtifactOutcome(artifact_id, STATUS_SKIPPED, output_path=final_path)

        recovered = 0
        if mode == RunMode.INCREMENTAL:
            existing = read_mapping(final_path, artifact.fmt)
            pending, base, recovered = self.split_pending(
                source_mapping, existing, builtin_recovery
            )
            if not pending and recovered == 0:
                self.observer.info(f"No new entries, nothing to update: {final_path}")
                return ArtifactOutcome(artifact_id, STATUS_NOOP, output_path=final_path)
            if recovered:
                self.observer.info(
                    f"Recovered {recovered} entries from built-in translation "
                    f"(ModID: {artifact.mod_id})"
                )
            if pending:
                self.observer.info(
                    f"Incremental update found {len(pending)} new entries "
                    f"(ModID: {artifact.mod_id})"
                )
                backup_path = self._write_raw_backup(artifact, pending)
                self.observer.info(f"Backed up new source entries: {backup_path}")
        else:
            pending, base = dict(source_mapping), {}

        translated_part = self.scheduler.schedule(
            pending,
            artifact.mod_id,
            chunk_size=self.chunk_size,
            network_limiter=self.network_limiter,
            cancel=cancel,
        )

        translatable = [key for key, _ in translatable_units(pending)]
        if cancel.is_cancelled():
            self.observer.warn(f"Cancelled, discarding results for: {final_path}")
            return ArtifactOutcome(
                artifact_id,
                STATUS_CANCELLED,
                output_path=final_path,
                pending=len(translatable),
                recovered=recovered,
            )

        dropped = sum(1 for key in translatable if key not in translated_part)
        base.update(translated_part)
        write_mapping(final_path, base, artifact.fmt)

        action = "Updated" if mode == RunMode.INCREMENTAL and existed else "Generated"
        if dropped:
            self.observer.warn(
                f"{action} with {dropped} entries dropped by failed batches "
                f"(ModID: {artifact.mod_id}): {final_path}"
            )
        else:
            self.observer.success(f"{action} (ModID: {artifact.mod_id}): {final_path}")
        return ArtifactOutcome(
            artifact_id,
            STATUS_PERSISTED,
            output_path=final_path,
            pending=len(translatable),
            recovered=recovered,
            translated=len(translatable) - dropped,
            dropped=dropped,
        )
