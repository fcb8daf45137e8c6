"""
Pipeline Manager - content-addressed translation of visual elements.

Per element:  hashing -> (cache_hit | translating -> persisting -> done)
and translating -> failed -> idle on any stage error.

Stages inside "translating":  credentials -> OCR -> context (optional) ->
translation. An element id that is already in flight is turned away, and a
hash that is already processed never reaches the network.
"""

import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, Optional

from .background import BackgroundWorker
from .config import RunConfig, Settings, get_settings, load_run_config
from .context import ContextGenerator
from .credentials import CredentialResolver
from .errors import CredentialsMissingError, PipelineStageError, UnsupportedElementError
from .models import (
    BulkProgress,
    OutcomeStatus,
    PipelineOutcome,
    PipelineState,
    Snapshot,
    VisualElement,
)
from .recognition import RecognitionClient
from .snapshot import SnapshotExtractor, is_supported
from .state import TranshotState
from .storage import JsonFileStore, KeyValueStore
from .translation import TranslationClient

logger = logging.getLogger(__name__)

StatusCallback = Callable[[PipelineState, str], Awaitable[None]]
ProgressObserver = Callable[[BulkProgress], Awaitable[None]]


class TranslationPipeline:
    """
    Orchestrates snapshot, credentials, OCR, context and translation.

    The state object is injected so tests and the web app can share or
    replace it; all writes to it go through this class.
    """

    def __init__(
        self,
        state: TranshotState,
        extractor: SnapshotExtractor,
        resolver: CredentialResolver,
        recognizer: RecognitionClient,
        translator: TranslationClient,
        context_generator: Optional[ContextGenerator] = None,
        background: Optional[BackgroundWorker] = None,
        settings: Optional[Settings] = None,
    ):
        self.state = state
        self.extractor = extractor
        self.resolver = resolver
        self.recognizer = recognizer
        self.translator = translator
        self.context_generator = context_generator
        self.background = background
        self.settings = settings or get_settings()

        self._in_flight: set[str] = set()
        self._states: dict[str, PipelineState] = {}
        self._credentials_prompt_shown = False

    @property
    def store(self) -> KeyValueStore:
        return self.state.store

    def state_of(self, element_id: str) -> PipelineState:
        return self._states.get(element_id, PipelineState.IDLE)

    def is_busy(self, element_id: str) -> bool:
        return element_id in self._in_flight

    async def _set_state(
        self,
        element_id: str,
        state: PipelineState,
        status_callback: Optional[StatusCallback],
    ) -> None:
        self._states[element_id] = state
        if status_callback:
            await status_callback(state, element_id)

    async def process(
        self,
        element: VisualElement,
        status_callback: Optional[StatusCallback] = None,
    ) -> PipelineOutcome:
        """
        Run the pipeline for one element.

        Returns a PipelineOutcome; stage errors are reported in it rather than
        raised so one element never breaks a bulk run.
        """
        element_id = element.element_id
        if element_id in self._in_flight:
            logger.info(f"[{element_id}] already translating, skipped")
            return PipelineOutcome(element_id=element_id, status=OutcomeStatus.SKIPPED_BUSY)

        self._in_flight.add(element_id)
        start_time = time.time()
        stages_completed: list[str] = []
        snapshot: Optional[Snapshot] = None
        try:
            await self._set_state(element_id, PipelineState.HASHING, status_callback)
            snapshot = await self.extractor.snapshot(element)
            stages_completed.append("hashing")

            if self.state.is_processed(snapshot.hash):
                await self._set_state(element_id, PipelineState.CACHE_HIT, status_callback)
                logger.info(f"[{element_id}] hash {snapshot.hash[:12]} already processed")
                return PipelineOutcome(
                    element_id=element_id,
                    status=OutcomeStatus.SKIPPED_PROCESSED,
                    hash=snapshot.hash,
                    translations=self.state.get_translations(snapshot.hash) or [],
                    context=self.state.translation_contexts.get(snapshot.hash),
                    processing_time_ms=(time.time() - start_time) * 1000,
                    stages_completed=stages_completed,
                )

            await self._set_state(element_id, PipelineState.TRANSLATING, status_callback)
            config = await load_run_config(self.store, self.settings)
            translations, context, diagnostics = await self._translate(
                element, snapshot, config, stages_completed
            )

            await self._set_state(element_id, PipelineState.PERSISTING, status_callback)
            await self.state.record_translation(
                snapshot.hash,
                translations,
                context,
                image_url=element.src,
                origin=element.origin,
                page_url=element.page_url,
            )
            stages_completed.append("persisting")

            await self._set_state(element_id, PipelineState.DONE, status_callback)
            total_time = (time.time() - start_time) * 1000
            logger.info(
                f"[{element_id}] Pipeline done: hash={snapshot.hash[:12]} "
                f"blocks={len(translations)} {total_time:.0f}ms"
            )
            return PipelineOutcome(
                element_id=element_id,
                status=OutcomeStatus.COMPLETED,
                hash=snapshot.hash,
                translations=translations,
                context=context,
                processing_time_ms=total_time,
                stages_completed=stages_completed,
                debug=diagnostics if config.debug_mode else None,
            )

        except UnsupportedElementError as e:
            self._states[element_id] = PipelineState.IDLE
            logger.info(f"[{element_id}] {e}")
            return self._failure(element_id, OutcomeStatus.UNSUPPORTED, e, snapshot, start_time, stages_completed)

        except CredentialsMissingError as e:
            open_settings = not self._credentials_prompt_shown
            self._credentials_prompt_shown = True
            outcome = await self._fail(element_id, e, snapshot, start_time, stages_completed, status_callback)
            outcome.open_settings = open_settings
            return outcome

        except PipelineStageError as e:
            return await self._fail(element_id, e, snapshot, start_time, stages_completed, status_callback)

        except Exception as e:
            logger.exception(f"[{element_id}] Pipeline crashed")
            return await self._fail(element_id, e, snapshot, start_time, stages_completed, status_callback)

        finally:
            self._in_flight.discard(element_id)

    async def _translate(
        self,
        element: VisualElement,
        snapshot: Snapshot,
        config: RunConfig,
        stages_completed: list[str],
    ):
        chat_key = await self.resolver.resolve_chat_key()
        ocr = self.state.get_vision_result(snapshot.hash)
        ocr_cached = ocr is not None
        # OCR auth (possibly a token exchange) only when recognition will run
        auth = None if ocr_cached else await self.resolver.resolve_auth()
        stages_completed.append("credentials")

        if ocr_cached:
            logger.info(f"[{element.element_id}] reusing cached OCR result for {snapshot.hash[:12]}")
        else:
            ocr = await self.recognizer.recognize(
                snapshot.base64,
                snapshot.mime_type,
                auth,
                width=snapshot.width,
                height=snapshot.height,
            )
            await self.state.record_vision_result(snapshot.hash, ocr)
            await self._export(snapshot.hash, ocr.raw)
        stages_completed.append("ocr")

        context: Optional[str] = None
        if config.context_enabled and self.context_generator is not None and ocr.blocks:
            context = await self.context_generator.generate_context(
                snapshot.base64,
                ocr.full_text,
                config.target_language,
                chat_key,
                config.context_model,
                mime_type=snapshot.mime_type,
            )
            context = context or None
            stages_completed.append("context")

        translations = await self.translator.translate(
            ocr.blocks,
            chat_key,
            config.model,
            context=context,
            target_language=config.target_language,
        )
        stages_completed.append("translation")
        diagnostics = {
            "ocr_cached": ocr_cached,
            "blocks": len(ocr.blocks),
            "parser": self.translator.last_parser,
            "model": config.model,
        }
        return translations, context, diagnostics

    async def _export(self, content_hash: str, data: dict) -> None:
        if self.background is None or not self.settings.export_results:
            return
        response = await self.background.handle_message(
            {"type": "persistResult", "hash": content_hash, "data": data}
        )
        if not response.success:
            logger.warning(f"export of {content_hash[:12]} failed: {response.error}")

    def _failure(
        self,
        element_id: str,
        status: OutcomeStatus,
        error: Exception,
        snapshot: Optional[Snapshot],
        start_time: float,
        stages_completed: list[str],
    ) -> PipelineOutcome:
        return PipelineOutcome(
            element_id=element_id,
            status=status,
            hash=snapshot.hash if snapshot else None,
            error_code=getattr(error, "error_code", None) or "pipeline_failed",
            error_message=str(error),
            processing_time_ms=(time.time() - start_time) * 1000,
            stages_completed=stages_completed,
        )

    async def _fail(
        self,
        element_id: str,
        error: Exception,
        snapshot: Optional[Snapshot],
        start_time: float,
        stages_completed: list[str],
        status_callback: Optional[StatusCallback],
    ) -> PipelineOutcome:
        logger.error(f"[{element_id}] Pipeline failed: {error}")
        await self._set_state(element_id, PipelineState.FAILED, status_callback)
        # Ready for a fresh manual trigger
        self._states[element_id] = PipelineState.IDLE
        return self._failure(element_id, OutcomeStatus.FAILED, error, snapshot, start_time, stages_completed)

    async def process_all(
        self,
        elements: Iterable[VisualElement],
        observer: Optional[ProgressObserver] = None,
        request_id: Optional[str] = None,
    ) -> BulkProgress:
        """
        Translate every eligible element one after another.

        Sequential on purpose: one run finishes (success or failure) before the
        next one starts, which caps outbound API load.
        """
        progress = BulkProgress(request_id=request_id or f"bulk-{uuid.uuid4().hex[:8]}", state="discovering")

        async def emit() -> None:
            if observer:
                await observer(progress.model_copy())

        await emit()
        eligible = [element for element in elements if is_supported(element)]
        progress.total = len(eligible)
        await emit()

        for element in eligible:
            progress.state = "translating"
            await emit()
            outcome = await self.process(element)
            if outcome.status == OutcomeStatus.COMPLETED:
                progress.completed += 1
            elif outcome.status in (OutcomeStatus.SKIPPED_BUSY, OutcomeStatus.SKIPPED_PROCESSED):
                progress.skipped += 1
            else:
                progress.failed += 1

        progress.state = "complete"
        await emit()
        logger.info(
            f"[{progress.request_id}] bulk complete: total={progress.total} completed={progress.completed} "
            f"skipped={progress.skipped} failed={progress.failed}"
        )
        return progress


async def build_pipeline(settings: Optional[Settings] = None, store: Optional[KeyValueStore] = None) -> TranslationPipeline:
    """Wire a pipeline from settings and load its state from storage."""
    settings = settings or get_settings()
    store = store or JsonFileStore(settings.storage_path)
    state = await TranshotState(store).load()
    background = BackgroundWorker(settings.export_dir, timeout_sec=settings.http_timeout_sec)
    return TranslationPipeline(
        state=state,
        extractor=SnapshotExtractor(background, timeout_sec=settings.http_timeout_sec),
        resolver=CredentialResolver(
            store,
            api_key=settings.vision_api_key,
            credentials_file=settings.credentials_file,
            chat_api_key=settings.chat_api_key,
            scope=settings.vision_scope,
            token_uri=settings.token_uri,
            timeout_sec=settings.http_timeout_sec,
        ),
        recognizer=RecognitionClient(settings.vision_endpoint, timeout_sec=settings.http_timeout_sec),
        translator=TranslationClient(
            base_url=settings.chat_base_url,
            timeout_sec=settings.chat_timeout_sec,
            target_language=settings.target_language,
        ),
        context_generator=ContextGenerator(base_url=settings.chat_base_url, timeout_sec=settings.chat_timeout_sec),
        background=background,
        settings=settings,
    )
