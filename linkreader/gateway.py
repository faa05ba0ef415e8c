from __future__ import annotations

import asyncio
import enum
import functools
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from linkreader.config import ServiceConfig
from linkreader.llm_provider import (
    LocalPassthroughProvider,
    OpenAICompatibleProvider,
    ProviderAttemptResult,
    ProviderCallError,
    ProviderCapabilitySet,
    UploadedFile,
)

logger = logging.getLogger(__name__)

PROVIDER_CAPABILITIES: dict[str, ProviderCapabilitySet] = {
    "seed": ProviderCapabilitySet(supports_text=True, supports_image=True),
    "qwen": ProviderCapabilitySet(supports_text=True, supports_image=True),
    "qwenLong": ProviderCapabilitySet(supports_text=True, supports_file_upload=True),
    "glm4": ProviderCapabilitySet(supports_text=True),
    "volcengine": ProviderCapabilitySet(supports_text=True),
    "local": ProviderCapabilitySet(supports_text=True),
}

PROCESSING_STATUSES = {"processing", "uploaded", "pending", "in_progress"}
PROVIDER_WORKERS = 8


class Capability(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    UPLOAD = "upload"


class UploadPhase(str, enum.Enum):
    SUBMIT = "submit"
    POLL = "poll"
    ANALYZE = "analyze"


def supports(name: str, capability: Capability) -> bool:
    capabilities = PROVIDER_CAPABILITIES.get(name)
    if capabilities is None:
        return False
    if capability is Capability.TEXT:
        return capabilities.supports_text
    if capability is Capability.IMAGE:
        return capabilities.supports_image
    return capabilities.supports_file_upload


class ProviderGateway:
    """Uniform async access to every configured backend, with per-call deadlines."""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.timeouts = config.timeouts
        self.providers: dict[str, OpenAICompatibleProvider | LocalPassthroughProvider] = {
            "local": LocalPassthroughProvider()
        }
        for name in PROVIDER_CAPABILITIES:
            if name == "local":
                continue
            provider = OpenAICompatibleProvider(name, config.provider(name), timeout=self.timeouts.provider_call)
            if provider.is_configured:
                self.providers[name] = provider
        self.executor = ThreadPoolExecutor(max_workers=PROVIDER_WORKERS, thread_name_prefix="linkreader-provider")

    def available(self, name: str):
        return self.providers.get(name)

    def is_available(self, name: str, capability: Capability) -> bool:
        return self.available(name) is not None and supports(name, capability)

    def _unavailable(self, name: str, capability: Capability) -> ProviderAttemptResult:
        if name not in self.providers:
            return ProviderAttemptResult.failure(name, f"Provider '{name}' is not configured.", "unavailable")
        return ProviderAttemptResult.failure(
            name,
            f"Provider '{name}' does not support {capability.value} analysis.",
            "unsupported",
        )

    async def _call_blocking(self, timeout: float, func, *args):
        # A timed-out worker keeps its thread until the provider socket times out.
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, functools.partial(func, *args))
        return await asyncio.wait_for(future, timeout=timeout)

    async def _with_deadline(self, name: str, model: str, timeout: float, func, *args) -> ProviderAttemptResult:
        try:
            return await self._call_blocking(timeout, func, *args)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.0fs", name, timeout)
            return ProviderAttemptResult.failure(name, f"{name} call timed out after {timeout:.0f}s.", "timeout", model=model)

    async def analyze_text(self, name: str, text: str, instructions: str, system_prompt: str) -> ProviderAttemptResult:
        if not self.is_available(name, Capability.TEXT):
            return self._unavailable(name, Capability.TEXT)
        provider = self.providers[name]
        return await self._with_deadline(
            name, provider.model, self.timeouts.provider_call, provider.analyze_text, text, instructions, system_prompt
        )

    async def analyze_image(
        self,
        name: str,
        image_bytes: bytes,
        instructions: str,
        system_prompt: str,
        mime_type: str = "image/jpeg",
    ) -> ProviderAttemptResult:
        if not self.is_available(name, Capability.IMAGE):
            return self._unavailable(name, Capability.IMAGE)
        provider = self.providers[name]
        return await self._with_deadline(
            name,
            provider.model,
            self.timeouts.provider_call,
            provider.analyze_image,
            image_bytes,
            instructions,
            system_prompt,
            mime_type,
        )

    async def analyze_via_upload(
        self,
        name: str,
        content: bytes,
        declared_type: str,
        instructions: str,
        system_prompt: str,
    ) -> ProviderAttemptResult:
        """Submit the payload, poll until the provider has processed it, then analyze by reference."""
        if not self.is_available(name, Capability.UPLOAD):
            return self._unavailable(name, Capability.UPLOAD)

        provider = self.providers[name]
        suffix = f".{declared_type.lstrip('.')}" if declared_type else ""
        handle, raw_path = tempfile.mkstemp(prefix="linkreader_", suffix=suffix)
        temp_path = Path(raw_path)
        phase = UploadPhase.SUBMIT
        try:
            with os.fdopen(handle, "wb") as temp_file:
                temp_file.write(content)

            uploaded: UploadedFile = await self._call_blocking(
                self.timeouts.upload_submit,
                provider.submit_file,
                temp_path,
                f"document{suffix}",
                self.timeouts.upload_submit,
            )
            logger.info("Uploaded %d bytes to %s as %s (%s)", len(content), name, uploaded.file_id, uploaded.status)

            phase = UploadPhase.POLL
            status = uploaded.status
            polls = 0
            while status in PROCESSING_STATUSES and polls < self.timeouts.upload_max_polls:
                await asyncio.sleep(self.timeouts.upload_poll_interval)
                polls += 1
                try:
                    status = await self._call_blocking(
                        self.timeouts.upload_poll_timeout, provider.file_status, uploaded.file_id
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "Status check %d for %s timed out after %.0fs", polls, uploaded.file_id, self.timeouts.upload_poll_timeout
                    )
                except ProviderCallError as exc:
                    logger.warning("Status check %d for %s failed: %s", polls, uploaded.file_id, exc.reason)
            if status in PROCESSING_STATUSES:
                logger.warning("File %s still %s after %d polls, analyzing anyway", uploaded.file_id, status, polls)

            phase = UploadPhase.ANALYZE
            return await self._with_deadline(
                name,
                provider.model,
                self.timeouts.provider_call,
                provider.analyze_file_reference,
                uploaded.file_id,
                instructions,
                system_prompt,
            )
        except asyncio.TimeoutError:
            reason = f"{name} {phase.value} step timed out."
            logger.warning(reason)
            return ProviderAttemptResult.failure(name, reason, "timeout", model=provider.model)
        except ProviderCallError as exc:
            logger.warning("%s upload failed during %s: %s", name, phase.value, exc.reason)
            return ProviderAttemptResult.failure(name, exc.reason, exc.kind, model=provider.model)
        except OSError as exc:
            logger.warning("Could not stage upload for %s: %s", name, exc)
            return ProviderAttemptResult.failure(name, f"Could not stage upload: {exc}", "network", model=provider.model)
        finally:
            temp_path.unlink(missing_ok=True)
