"""Run a translation over a file or a directory tree."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import os
import threading
import time
import zipfile

from mclang_flow.documents.jar import list_lang_entries, read_entry_mapping
from mclang_flow.documents.lang_map import FileFormat, read_mapping
from mclang_flow.documents.snbt import StructuredTextLocator
from mclang_flow.pipelines.incremental import (
    STATUS_CANCELLED,
    STATUS_ERROR,
    STATUS_NOOP,
    STATUS_PERSISTED,
    STATUS_SKIPPED,
    ArtifactOutcome,
    IncrementalPipeline,
    LangArtifact,
    RunMode,
)
from mclang_flow.pipelines.scheduler import BatchScheduler, TextTranslator
from mclang_flow.pipelines.text_batch import TextBatchTranslator
from mclang_flow.registry.config_store import AppConfig
from mclang_flow.utils.cancellation import CancellationToken, acquire_permit
from mclang_flow.utils.log_protocol import NullObserver, PipelineObserver
from mclang_flow.utils.mcmeta import write_mcmeta
from mclang_flow.utils.naming import extract_mod_id, is_source_lang_file

RUN_COMPLETED = "completed"
RUN_COMPLETED_WITH_DROPS = "completed_with_drops"
RUN_COMPLETED_WITH_ERRORS = "completed_with_errors"
RUN_CANCELLED = "cancelled"

LANG_EXTENSIONS = {".json", ".lang"}
QUEST_EXTENSION = ".snbt"
JAR_EXTENSION = ".jar"


@dataclass
class RunSummary:
    status: str
    outcomes: List[ArtifactOutcome] = field(default_factory=list)
    total_time: float = 0.0
    total_requests: int = 0
    total_retries: int = 0
    total_batches: int = 0
    failed_batches: int = 0

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "totalTime": round(self.total_time, 1),
            "artifacts": len(self.outcomes),
            "persisted": self.count(STATUS_PERSISTED),
            "skipped": self.count(STATUS_SKIPPED),
            "noop": self.count(STATUS_NOOP),
            "cancelled": self.count(STATUS_CANCELLED),
            "errors": self.count(STATUS_ERROR),
            "droppedEntries": sum(outcome.dropped for outcome in self.outcomes),
            "totalRequests": self.total_requests,
            "totalRetries": self.total_retries,
            "totalBatches": self.total_batches,
            "failedBatches": self.failed_batches,
            "outcomes": [asdict(outcome) for outcome in self.outcomes],
        }


class TranslationRunner:
    def __init__(
        self,
        config: AppConfig,
        *,
        translator: Optional[TextTranslator] = None,
        observer: Optional[PipelineObserver] = None,
        cancel: Optional[CancellationToken] = None,
    ):
        self.config = config
        self.observer = observer or NullObserver()
        self.cancel = cancel or CancellationToken()
        self.translator = translator or TextBatchTranslator.from_config(config, self.observer)
        self.network_limiter = threading.BoundedSemaphore(max(1, config.network_concurrency))
        self.file_limiter = threading.BoundedSemaphore(max(1, config.file_concurrency))
        self.scheduler = BatchScheduler(
            self.translator,
            chunk_size=config.batch_size,
            network_concurrency=config.network_concurrency,
            network_limiter=self.network_limiter,
            observer=self.observer,
        )
        self.pipeline = IncrementalPipeline(
            self.scheduler,
            output_root=config.output_path,
            source_lang=config.source_lang,
            target_lang=config.target_lang,
            chunk_size=config.batch_size,
            skip_existing=config.skip_existing,
            network_limiter=self.network_limiter,
            observer=self.observer,
        )
        self.locator = StructuredTextLocator(self.observer)

    def close(self) -> None:
        self.scheduler.close()
        closer = getattr(self.translator, "close", None)
        if callable(closer):
            closer()

    # ------------------------------------------------------------------
    # source discovery
    # ------------------------------------------------------------------

    def _is_candidate(self, path: str, explicit: bool) -> bool:
        ext = os.path.splitext(path)[1].lower()
        if ext == JAR_EXTENSION:
            return True
        if ext == QUEST_EXTENSION:
            return True
        if ext in LANG_EXTENSIONS:
            return explicit or is_source_lang_file(path, self.config.source_lang)
        return False

    def collect_sources(self, input_path: str) -> List[str]:
        if os.path.isfile(input_path):
            return [input_path] if self._is_candidate(input_path, explicit=True) else []
        output_root = os.path.abspath(self.config.output_path)
        sources: List[str] = []
        for root, dirs, files in os.walk(input_path):
            dirs[:] = sorted(
                d for d in dirs if os.path.abspath(os.path.join(root, d)) != output_root
            )
            for name in sorted(files):
                path = os.path.join(root, name)
                if self._is_candidate(path, explicit=False):
                    sources.append(path)
        return sources

    # ------------------------------------------------------------------
    # per-file processing
    # ------------------------------------------------------------------

    def _process_jar(self, path: str, mode: RunMode) -> List[ArtifactOutcome]:
        self.observer.info(f"Scanning JAR: {os.path.basename(path)}")
        outcomes: List[ArtifactOutcome] = []
        with zipfile.ZipFile(path) as archive:
            entries = list_lang_entries(
                archive, self.config.source_lang, self.config.target_lang
            )
            if not entries:
                self.observer.info(f"No {self.config.source_lang} language files: {path}")
            for entry in entries:
                artifact = LangArtifact(entry.mod_id, entry.file_name, entry.fmt)
                if self.cancel.is_cancelled():
                    outcomes.append(ArtifactOutcome(artifact.artifact_id, STATUS_CANCELLED))
                    continue
                try:
                    source_mapping = read_entry_mapping(archive, entry.entry_name, entry.fmt)
                    builtin = (
                        read_entry_mapping(archive, entry.builtin_entry, entry.fmt)
                        if entry.builtin_entry
                        else None
                    )
                    outcomes.append(
                        self.pipeline.run(
                            source_mapping, artifact, builtin, mode=mode, cancel=self.cancel
                        )
                    )
                except Exception as exc:
                    message = f"{type(exc).__name__}: {exc}"
                    self.observer.error(
                        f"Failed to process {artifact.artifact_id} in {path}: {message}"
                    )
                    outcomes.append(
                        ArtifactOutcome(artifact.artifact_id, STATUS_ERROR, message=message)
                    )
        return outcomes

    def _process_lang_file(self, path: str, mode: RunMode) -> List[ArtifactOutcome]:
        fmt = FileFormat.from_name(path)
        self.observer.info(f"Processing {fmt.value.upper()}: {path}")
        artifact = LangArtifact(extract_mod_id(path, self.observer), os.path.basename(path), fmt)
        source_mapping = read_mapping(path, fmt)
        if not source_mapping:
            self.observer.warn(f"Language file is empty or unparseable: {path}")
            return [ArtifactOutcome(artifact.artifact_id, STATUS_NOOP, message="empty source")]
        ext = os.path.splitext(path)[1]
        builtin_path = os.path.join(os.path.dirname(path), f"{self.config.target_lang}{ext}")
        builtin = read_mapping(builtin_path, fmt) if os.path.exists(builtin_path) else None
        return [self.pipeline.run(source_mapping, artifact, builtin, mode=mode, cancel=self.cancel)]

    def _quest_output_path(self, path: str, input_root: str) -> str:
        if os.path.isdir(input_root):
            relative = os.path.relpath(path, input_root)
        else:
            relative = os.path.basename(path)
        return os.path.join(self.config.output_path, relative)

    def _process_quest(self, path: str, input_root: str, mode: RunMode) -> List[ArtifactOutcome]:
        artifact_id = os.path.splitext(os.path.basename(path))[0]
        if self.config.skip_quest:
            self.observer.info(f"Quest translation disabled, skipped: {path}")
            return [ArtifactOutcome(artifact_id, STATUS_SKIPPED, message="skip_quest")]
        output_path = self._quest_output_path(path, input_root)
        if mode == RunMode.FULL and self.config.skip_existing and os.path.exists(output_path):
            self.observer.info(f"Skipping existing output: {output_path}")
            return [ArtifactOutcome(artifact_id, STATUS_SKIPPED, output_path=output_path)]

        self.observer.info(f"Processing SNBT quest file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            document = f.read()
        translated, dropped = self.locator.extract_and_translate(
            document, artifact_id, self.scheduler, self.cancel
        )
        if translated is None:
            status = STATUS_CANCELLED if self.cancel.is_cancelled() else STATUS_NOOP
            return [ArtifactOutcome(artifact_id, status, output_path=output_path)]

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            f.write(translated)
        self.observer.success(f"SNBT translation done: {output_path}")
        return [
            ArtifactOutcome(artifact_id, STATUS_PERSISTED, output_path=output_path, dropped=dropped)
        ]

    def process_file(self, path: str, input_root: str, mode: RunMode) -> List[ArtifactOutcome]:
        ext = os.path.splitext(path)[1].lower()
        try:
            if ext == JAR_EXTENSION:
                return self._process_jar(path, mode)
            if ext == QUEST_EXTENSION:
                return self._process_quest(path, input_root, mode)
            if ext in LANG_EXTENSIONS:
                return self._process_lang_file(path, mode)
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            self.observer.error(f"Failed to process {path}: {message}")
            return [ArtifactOutcome(path, STATUS_ERROR, message=message)]
        self.observer.warn(f"Unsupported file skipped: {path}")
        return []

    def _file_task(self, path: str, input_root: str, mode: RunMode) -> List[ArtifactOutcome]:
        try:
            return self.process_file(path, input_root, mode)
        finally:
            self.file_limiter.release()

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------

    def _summary_status(self, outcomes: List[ArtifactOutcome], stopped_early: bool) -> str:
        if stopped_early or any(outcome.status == STATUS_CANCELLED for outcome in outcomes):
            return RUN_CANCELLED
        if any(outcome.status == STATUS_ERROR for outcome in outcomes):
            return RUN_COMPLETED_WITH_ERRORS
        if any(outcome.dropped for outcome in outcomes):
            return RUN_COMPLETED_WITH_DROPS
        return RUN_COMPLETED

    def run(self, input_path: Optional[str] = None, mode: RunMode = RunMode.FULL) -> RunSummary:
        start = time.time()
        input_path = input_path or self.config.input_path
        if not input_path or not os.path.exists(input_path):
            raise FileNotFoundError(f"Input path not found: {input_path}")

        sources = self.collect_sources(input_path)
        self.observer.info(f"Found {len(sources)} source files ({mode.value} mode)")

        outcomes: List[ArtifactOutcome] = []
        width = max(1, self.config.file_concurrency)
        with ThreadPoolExecutor(max_workers=width, thread_name_prefix="mclang-file") as executor:
            futures = []
            stopped_early = False
            for path in sources:
                if not acquire_permit(self.file_limiter, self.cancel):
                    self.observer.warn("Stop requested, no further files are started")
                    stopped_early = True
                    break
                try:
                    futures.append(executor.submit(self._file_task, path, input_path, mode))
                except RuntimeError:
                    self.file_limiter.release()
                    raise
            for future in as_completed(futures):
                outcomes.extend(future.result())

        outcomes.sort(key=lambda outcome: outcome.artifact_id)
        summary = RunSummary(
            status=self._summary_status(outcomes, stopped_early),
            outcomes=outcomes,
            total_time=time.time() - start,
            total_batches=self.scheduler.total_batches,
            failed_batches=self.scheduler.failed_batches,
        )
        transport = getattr(self.translator, "transport", None)
        if transport is not None:
            summary.total_requests = getattr(transport, "total_requests", 0)
            summary.total_retries = getattr(transport, "total_retries", 0)

        if summary.status == RUN_CANCELLED:
            self.observer.warn("Run cancelled, unfinished artifacts were not written")
            return summary
        if summary.count(STATUS_PERSISTED):
            write_mcmeta(self.config.output_path)
        if summary.status == RUN_COMPLETED:
            self.observer.success("All translation tasks completed")
        elif summary.status == RUN_COMPLETED_WITH_DROPS:
            self.observer.warn("Completed, some batches were dropped; rerun in update mode")
        else:
            self.observer.error(f"Completed with {summary.count(STATUS_ERROR)} failed artifacts")
        return summary
