from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import urlsplit

from linkreader.classification import ContentCategory, classify, is_data_url, unwrap_image_search_link
from linkreader.config import ServiceConfig
from linkreader.extraction import ExtractionResult, Extractor, default_extractors
from linkreader.fetching import FetchedPayload, FetchError, FetchRequest, fetch_payload
from linkreader.gateway import Capability, ProviderGateway
from linkreader.llm_provider import PROVIDER_DISPLAY_NAMES, ProviderAttemptResult
from linkreader.prompts import instructions_for, system_prompt_for

logger = logging.getLogger(__name__)

QUICK_PDF_THRESHOLD = 1024 * 1024


class OrchestratorState(str, enum.Enum):
    CLASSIFYING = "classifying"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted_all_candidates"


@dataclass(frozen=True)
class Candidate:
    extractor: str
    provider: str
    capability: Capability = Capability.TEXT


CANDIDATE_TABLES: dict[ContentCategory, tuple[Candidate, ...]] = {
    ContentCategory.WEBPAGE: (Candidate("webpage", "local"),),
    ContentCategory.IMAGE: (
        Candidate("image", "qwen", Capability.IMAGE),
        Candidate("image", "seed", Capability.IMAGE),
        Candidate("ocr", "local"),
    ),
    ContentCategory.PDF: (
        Candidate("pdf", "seed"),
        Candidate("document_upload", "qwenLong", Capability.UPLOAD),
        Candidate("pdf", "qwen"),
        Candidate("pdf", "volcengine"),
        Candidate("pdf", "glm4"),
    ),
    ContentCategory.WORD: (
        Candidate("word", "glm4"),
        Candidate("document_upload", "qwenLong", Capability.UPLOAD),
        Candidate("word", "qwen"),
        Candidate("word", "volcengine"),
    ),
    ContentCategory.SPREADSHEET: (
        Candidate("spreadsheet", "qwen"),
        Candidate("spreadsheet", "glm4"),
        Candidate("spreadsheet", "volcengine"),
    ),
    ContentCategory.VIDEO: (
        Candidate("video", "seed"),
        Candidate("video", "qwen"),
    ),
    ContentCategory.SHORT_VIDEO_LINK: (
        Candidate("short_video", "seed"),
        Candidate("short_video", "qwen"),
        Candidate("short_video", "glm4"),
    ),
    ContentCategory.UNSUPPORTED: (),
}

QUICK_PDF_CANDIDATES: tuple[Candidate, ...] = (
    Candidate("pdf_quick", "seed"),
    Candidate("pdf_quick", "qwen"),
    Candidate("pdf_quick", "volcengine"),
    Candidate("pdf_quick", "glm4"),
    Candidate("pdf_quick", "local"),
)

UPLOAD_EXTENSIONS = {ContentCategory.PDF: "pdf", ContentCategory.WORD: "docx"}


def new_task_id() -> str:
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class AttemptRecord:
    extractor: str
    provider: str
    succeeded: bool
    failure_reason: str | None = None
    failure_kind: str | None = None


@dataclass(frozen=True)
class ReadOutcome:
    task_id: str
    category: ContentCategory
    state: OrchestratorState
    text: str
    attempts: tuple[AttemptRecord, ...] = ()
    result: ProviderAttemptResult | None = None
    metadata: dict = field(default_factory=dict)
    quick: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is OrchestratorState.SUCCEEDED


def _path_extension(target: str) -> str:
    if is_data_url(target):
        return ""
    try:
        return PurePosixPath(urlsplit(target).path).suffix.lower().lstrip(".")
    except ValueError:
        return ""


class Orchestrator:
    """Runs the per-category fallback chain for one request at a time; holds no per-request state."""

    def __init__(
        self,
        config: ServiceConfig,
        gateway: ProviderGateway | None = None,
        extractors: dict[str, Extractor] | None = None,
        tables: dict[ContentCategory, tuple[Candidate, ...]] | None = None,
        quick_pdf_candidates: tuple[Candidate, ...] = QUICK_PDF_CANDIDATES,
        fetcher=fetch_payload,
    ):
        self.config = config
        self.timeouts = config.timeouts
        self.gateway = gateway or ProviderGateway(config)
        self.extractors = extractors or default_extractors()
        self.tables = tables if tables is not None else CANDIDATE_TABLES
        self.quick_pdf_candidates = quick_pdf_candidates
        self.fetcher = fetcher

    def candidates_for(self, category: ContentCategory, quick: bool = False) -> list[Candidate]:
        table = self.quick_pdf_candidates if quick else self.tables.get(category, ())
        if not self.config.fallback.use_ocr:
            table = tuple(candidate for candidate in table if candidate.extractor != "ocr")
        return list(table)

    def _has_available_candidate(self, category: ContentCategory) -> bool:
        candidates = self.candidates_for(category)
        if category is ContentCategory.PDF:
            # The local preview only counts once the payload is downloaded.
            candidates += [item for item in self.candidates_for(category, quick=True) if item.provider != "local"]
        return any(self.gateway.is_available(item.provider, item.capability) for item in candidates)

    def _fetch_timeout(self, category: ContentCategory) -> float:
        if category is ContentCategory.SHORT_VIDEO_LINK:
            return self.timeouts.short_video_page
        if category is ContentCategory.WEBPAGE:
            return self.timeouts.webpage_download
        return self.timeouts.download

    async def read(self, fetch_request: FetchRequest) -> ReadOutcome:
        task_id = new_task_id()
        started = time.monotonic()
        deadline = started + self.timeouts.request_deadline

        target = unwrap_image_search_link(fetch_request.target.strip())
        if target != fetch_request.target.strip():
            logger.info("[%s] unwrapped image-search link to %s", task_id, target)

        logger.info("[%s] state=%s target=%s", task_id, OrchestratorState.CLASSIFYING.value, target[:120])
        provisional = classify(target)
        if provisional is not ContentCategory.UNSUPPORTED and not self._has_available_candidate(provisional):
            return self._exhausted(task_id, provisional, [], None)

        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(
                    self.fetcher,
                    target,
                    timeout=self._fetch_timeout(provisional),
                    max_bytes=self.config.fallback.max_file_size,
                ),
                timeout=max(0.0, deadline - time.monotonic()),
            )
        except asyncio.TimeoutError:
            return self._fetch_failed(task_id, provisional, FetchError("Download exceeded the request deadline.", kind="timeout"))
        except FetchError as exc:
            return self._fetch_failed(task_id, provisional, exc)

        category = classify(target, payload.declared_content_type)
        quick = category is ContentCategory.PDF and len(payload.content) > QUICK_PDF_THRESHOLD
        candidates = self.candidates_for(category, quick=quick)
        logger.info(
            "[%s] classified as %s (%d bytes, %s)%s",
            task_id,
            category.value,
            len(payload.content),
            payload.declared_content_type or "no content type",
            " using quick PDF path" if quick else "",
        )
        if not candidates:
            reason = f"no handler for content type '{payload.declared_content_type or 'unknown'}'"
            return self._exhausted(task_id, category, [], ProviderAttemptResult.failure("", reason, "unsupported"))

        return await self._run_candidates(task_id, category, candidates, payload, fetch_request, target, quick, started, deadline)

    async def _extract(self, task_id: str, name: str, payload: FetchedPayload, category: ContentCategory, target: str) -> ExtractionResult:
        extractor = self.extractors[name]
        metadata = {
            "content_type": payload.declared_content_type,
            "source": payload.source_identifier,
            "category": category.value,
            "extension": _path_extension(target),
        }
        logger.info("[%s] state=%s extractor=%s", task_id, OrchestratorState.EXTRACTING.value, name)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(extractor.extract, payload.content, metadata),
                timeout=self.timeouts.extraction,
            )
        except asyncio.TimeoutError:
            logger.warning("[%s] extractor %s timed out", task_id, name)
            return ExtractionResult(
                text=f"The {category.label} could not be parsed within {self.timeouts.extraction:.0f}s.",
                metadata={"error": "timeout"},
                succeeded=False,
                warnings=(f"{name} extraction timed out",),
            )

    async def _invoke(
        self,
        candidate: Candidate,
        category: ContentCategory,
        payload: FetchedPayload,
        extraction: ExtractionResult,
        instructions: str,
        target: str,
    ) -> ProviderAttemptResult:
        system_prompt = system_prompt_for(category)
        if candidate.capability is Capability.IMAGE:
            mime_type = extraction.metadata.get("content_type") or "image/jpeg"
            return await self.gateway.analyze_image(candidate.provider, payload.content, instructions, system_prompt, mime_type)
        if candidate.capability is Capability.UPLOAD:
            extension = _path_extension(target) or UPLOAD_EXTENSIONS.get(category, "bin")
            return await self.gateway.analyze_via_upload(candidate.provider, payload.content, extension, instructions, system_prompt)
        return await self.gateway.analyze_text(candidate.provider, extraction.text, instructions, system_prompt)

    async def _run_candidates(
        self,
        task_id: str,
        category: ContentCategory,
        candidates: list[Candidate],
        payload: FetchedPayload,
        fetch_request: FetchRequest,
        target: str,
        quick: bool,
        started: float,
        deadline: float,
    ) -> ReadOutcome:
        instructions = instructions_for(category, fetch_request.user_prompt)
        extractions: dict[str, ExtractionResult] = {}
        attempts: list[AttemptRecord] = []
        last_failure: ProviderAttemptResult | None = None

        for candidate in candidates:
            if not self.gateway.is_available(candidate.provider, candidate.capability):
                logger.debug("[%s] skipping %s: not configured", task_id, candidate.provider)
                attempts.append(
                    AttemptRecord(candidate.extractor, candidate.provider, False, "not configured", "unavailable")
                )
                continue

            if time.monotonic() >= deadline:
                last_failure = ProviderAttemptResult.failure(
                    candidate.provider, "the request deadline was reached before all candidates were tried", "timeout"
                )
                break

            if candidate.extractor not in extractions:
                extractions[candidate.extractor] = await self._extract(task_id, candidate.extractor, payload, category, target)
            extraction = extractions[candidate.extractor]

            if not extraction.text.strip():
                reason = f"{candidate.extractor} extraction produced no text"
                logger.warning("[%s] %s, trying next candidate", task_id, reason)
                attempts.append(AttemptRecord(candidate.extractor, candidate.provider, False, reason, "empty_extraction"))
                continue

            if candidate.provider == "local" and not extraction.succeeded:
                attempts.append(
                    AttemptRecord(candidate.extractor, candidate.provider, False, extraction.text, "extraction_failed")
                )
                last_failure = ProviderAttemptResult.failure("local", extraction.text, "extraction_failed")
                continue

            logger.info(
                "[%s] state=%s extractor=%s provider=%s capability=%s",
                task_id,
                OrchestratorState.ANALYZING.value,
                candidate.extractor,
                candidate.provider,
                candidate.capability.value,
            )
            remaining = max(0.0, deadline - time.monotonic())
            try:
                result = await asyncio.wait_for(
                    self._invoke(candidate, category, payload, extraction, instructions, target),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                result = ProviderAttemptResult.failure(
                    candidate.provider, f"{candidate.provider} call exceeded the request deadline.", "timeout"
                )

            attempts.append(
                AttemptRecord(candidate.extractor, candidate.provider, result.succeeded, result.failure_reason, result.failure_kind)
            )
            if result.succeeded:
                logger.info("[%s] state=%s provider=%s", task_id, OrchestratorState.SUCCEEDED.value, candidate.provider)
                return ReadOutcome(
                    task_id=task_id,
                    category=category,
                    state=OrchestratorState.SUCCEEDED,
                    text=self._success_text(task_id, result, extraction, quick, started),
                    attempts=tuple(attempts),
                    result=result,
                    metadata=extraction.metadata,
                    quick=quick,
                )

            logger.warning("[%s] candidate %s/%s failed: %s", task_id, candidate.extractor, candidate.provider, result.failure_reason)
            last_failure = result

        return self._exhausted(task_id, category, attempts, last_failure)

    def _success_text(
        self,
        task_id: str,
        result: ProviderAttemptResult,
        extraction: ExtractionResult,
        quick: bool,
        started: float,
    ) -> str:
        sections: list[str] = []
        if quick:
            sections.append(
                "Quick analysis: only the first "
                f"{extraction.metadata.get('processed_pages', '?')} of {extraction.metadata.get('total_pages', '?')} "
                f"pages were analysed (task {task_id})."
            )
            if result.provider == "local":
                sections.append("No analysis provider answered; showing a content preview.")

        sections.append(result.content or "")

        footer = [f"Task: {task_id}", f"Provider: {PROVIDER_DISPLAY_NAMES.get(result.provider, result.provider)}"]
        if result.model:
            footer.append(f"Model: {result.model}")
        total_tokens = result.usage.get("total_tokens") if result.usage else None
        if total_tokens is not None:
            footer.append(f"Tokens: {total_tokens}")
        footer.append(f"Elapsed: {time.monotonic() - started:.1f}s")
        sections.append("---\n" + " | ".join(footer))
        return "\n\n".join(sections)

    def _fetch_failed(self, task_id: str, category: ContentCategory, exc: FetchError) -> ReadOutcome:
        logger.warning("[%s] fetch failed (%s): %s", task_id, exc.kind, exc.reason)
        suffix = " (timed out)" if exc.kind == "timeout" else ""
        return ReadOutcome(
            task_id=task_id,
            category=category,
            state=OrchestratorState.EXHAUSTED,
            text=f"Failed to fetch the {category.label}{suffix}: {exc.reason}",
            metadata={"fetch_error": exc.kind},
        )

    def _exhausted(
        self,
        task_id: str,
        category: ContentCategory,
        attempts: list[AttemptRecord],
        last_failure: ProviderAttemptResult | None,
    ) -> ReadOutcome:
        if last_failure is not None and last_failure.failure_reason:
            reason = last_failure.failure_reason
            if last_failure.failure_kind == "timeout":
                reason = f"timed out: {reason}"
        elif all(item.failure_kind == "unavailable" for item in attempts):
            tried = ", ".join(dict.fromkeys(candidate.provider for candidate in self.candidates_for(category))) or "none"
            reason = f"no configured provider can handle this content (candidates: {tried})"
        else:
            reason = attempts[-1].failure_reason or "every candidate failed"

        logger.warning("[%s] state=%s category=%s: %s", task_id, OrchestratorState.EXHAUSTED.value, category.value, reason)
        lines = [f"Failed to read the {category.label}: {reason}"]
        tried_attempts = [item for item in attempts if item.failure_kind != "unavailable"]
        if tried_attempts:
            lines.append("Attempts:")
            lines.extend(
                f"- {item.extractor} -> {item.provider}: {item.failure_reason or 'failed'}" for item in tried_attempts
            )
        return ReadOutcome(
            task_id=task_id,
            category=category,
            state=OrchestratorState.EXHAUSTED,
            text="\n".join(lines),
            attempts=tuple(attempts),
            result=last_failure,
        )
