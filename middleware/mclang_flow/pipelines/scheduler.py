"""Bounded-concurrency batch scheduler."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar
import threading

from mclang_flow.parsers.base import ParserError
from mclang_flow.providers.base import ProviderError
from mclang_flow.utils.cancellation import (
    CancellationToken,
    TranslationCancelled,
    acquire_permit,
)
from mclang_flow.utils.log_protocol import NullObserver, PipelineObserver

DEFAULT_CHUNK_SIZE = 20
DEFAULT_NETWORK_CONCURRENCY = 10

T = TypeVar("T")


class TextTranslator(Protocol):
    def translate_texts(
        self,
        texts: Sequence[str],
        context_id: str,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]: ...


def resolve_chunk_size(value: Any) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        return DEFAULT_CHUNK_SIZE
    return size if size > 0 else DEFAULT_CHUNK_SIZE


def partition(items: Sequence[T], chunk_size: int) -> List[List[T]]:
    size = resolve_chunk_size(chunk_size)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def translatable_units(mapping: Dict[str, Any]) -> List[Tuple[str, str]]:
    return [
        (key, value)
        for key, value in mapping.items()
        if isinstance(value, str) and value.strip()
    ]


class BatchScheduler:
    """Fans a mapping out as fixed-size batches and merges the replies back.

    A network permit is taken on the dispatching thread before each batch is
    submitted and released by the worker as soon as its single remote call
    returns, so the limiter caps in-flight calls across every artifact
    sharing it. Failed or malformed batches have their keys removed from the
    result so callers can tell "needs re-run" apart from "translated".
    """

    def __init__(
        self,
        translator: TextTranslator,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        network_concurrency: int = DEFAULT_NETWORK_CONCURRENCY,
        network_limiter: Optional[threading.Semaphore] = None,
        observer: Optional[PipelineObserver] = None,
    ):
        self.translator = translator
        self.chunk_size = resolve_chunk_size(chunk_size)
        width = max(1, int(network_concurrency or DEFAULT_NETWORK_CONCURRENCY))
        self.network_limiter = network_limiter or threading.BoundedSemaphore(width)
        self.observer = observer or NullObserver()
        self._executor = ThreadPoolExecutor(
            max_workers=width, thread_name_prefix="mclang-batch"
        )
        self._stats_lock = threading.Lock()
        self.total_batches = 0
        self.failed_batches = 0

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _note_batch(self, failed: bool) -> None:
        with self._stats_lock:
            self.total_batches += 1
            if failed:
                self.failed_batches += 1

    def _run_batch(
        self,
        limiter: threading.Semaphore,
        context_id: str,
        batch_no: str,
        texts: List[str],
        cancel: CancellationToken,
    ) -> Optional[List[str]]:
        try:
            translated = self.translator.translate_texts(texts, context_id, cancel)
        except TranslationCancelled:
            self.observer.warn(f"[{context_id}] Batch {batch_no} cancelled, dropped")
            return None
        except ParserError as exc:
            self.observer.warn(f"[{context_id}] Batch {batch_no} rejected, dropped: {exc}")
            return None
        except ProviderError as exc:
            self.observer.error(f"[{context_id}] Batch {batch_no} failed, dropped: {exc}")
            return None
        except Exception as exc:
            self.observer.error(
                f"[{context_id}] Batch {batch_no} failed unexpectedly, dropped: "
                f"{type(exc).__name__}: {exc}"
            )
            return None
        finally:
            limiter.release()
        if len(translated) != len(texts):
            self.observer.warn(
                f"[{context_id}] Batch {batch_no} returned {len(translated)} items "
                f"for {len(texts)}, dropped"
            )
            return None
        return list(translated)

    def schedule(
        self,
        mapping: Dict[str, Any],
        context_id: str,
        chunk_size: Optional[int] = None,
        network_limiter: Optional[threading.Semaphore] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        cancel = cancel or CancellationToken()
        limiter = network_limiter or self.network_limiter
        size = resolve_chunk_size(chunk_size if chunk_size is not None else self.chunk_size)

        result = dict(mapping)
        units = translatable_units(mapping)
        if not units:
            return result

        chunks = partition(units, size)
        total_batches = len(chunks)
        futures: Dict[Future, List[str]] = {}
        undispatched: List[List[Tuple[str, str]]] = []

        for batch_idx, chunk in enumerate(chunks):
            if cancel.is_cancelled() or not acquire_permit(limiter, cancel):
                undispatched = chunks[batch_idx:]
                self.observer.warn(
                    f"[{context_id}] Stop requested, {len(undispatched)} of "
                    f"{total_batches} batches not dispatched"
                )
                break
            keys = [key for key, _ in chunk]
            texts = [text for _, text in chunk]
            batch_no = f"{batch_idx + 1}/{total_batches}"
            self.observer.info(
                f"[{context_id}] Dispatching batch {batch_no} ({len(chunk)} items)"
            )
            try:
                future = self._executor.submit(
                    self._run_batch, limiter, context_id, batch_no, texts, cancel
                )
            except RuntimeError:
                limiter.release()
                raise
            futures[future] = keys

        for future in as_completed(futures):
            keys = futures[future]
            translated = future.result()
            self._note_batch(translated is None)
            if translated is None:
                for key in keys:
                    result.pop(key, None)
                continue
            for key, text in zip(keys, translated):
                result[key] = text

        for chunk in undispatched:
            self._note_batch(True)
            for key, _ in chunk:
                result.pop(key, None)

        return result
