import asyncio
import threading
import time
from pathlib import Path

from linkreader.config import ServiceConfig, parse_service_config
from linkreader.gateway import PROVIDER_WORKERS, Capability, ProviderGateway
from linkreader.llm_provider import ProviderAttemptResult, ProviderCallError, UploadedFile


class _FakeUploadProvider:
    name = "qwenLong"
    model = "qwen-long"

    def __init__(self, statuses, submit_error=None):
        self.statuses = list(statuses)
        self.submit_error = submit_error
        self.staged_paths: list[Path] = []
        self.staged_bytes: list[bytes] = []
        self.status_calls = 0
        self.analyzed_ids: list[str] = []

    def submit_file(self, file_path, filename, timeout=60.0):
        self.staged_paths.append(file_path)
        self.staged_bytes.append(file_path.read_bytes())
        if self.submit_error is not None:
            raise self.submit_error
        return UploadedFile(file_id="file-9", status="processing", filename=filename)

    def file_status(self, file_id):
        self.status_calls += 1
        return self.statuses.pop(0) if self.statuses else "processing"

    def analyze_file_reference(self, file_id, instructions, system_prompt):
        self.analyzed_ids.append(file_id)
        return ProviderAttemptResult(succeeded=True, content="Summary", provider="qwenLong", model=self.model)


def _upload_gateway(max_polls: int = 3, poll_timeout: float = 30.0) -> ProviderGateway:
    config = parse_service_config(
        {
            "qwenLong": {"apiKey": "key", "model": "qwen-long"},
            "timeouts": {"uploadPollInterval": 0, "uploadMaxPolls": max_polls, "uploadPollTimeout": poll_timeout},
        }
    )
    return ProviderGateway(config)


def test_unconfigured_providers_are_unavailable():
    gateway = ProviderGateway(ServiceConfig())

    result = asyncio.run(gateway.analyze_text("qwen", "text", "Summarize", "system"))

    assert result.succeeded is False
    assert result.failure_kind == "unavailable"
    assert gateway.available("qwen") is None
    assert gateway.is_available("local", Capability.TEXT)


def test_capability_mismatch_is_reported_as_unsupported():
    gateway = ProviderGateway(parse_service_config({"glm4": {"apiKey": "key", "model": "glm-4"}}))

    result = asyncio.run(gateway.analyze_image("glm4", b"\x89PNG", "Describe", "system"))

    assert result.failure_kind == "unsupported"


def test_slow_provider_call_becomes_timeout_result():
    gateway = ProviderGateway(
        parse_service_config({"glm4": {"apiKey": "key", "model": "glm-4"}, "timeouts": {"providerCall": 0.05}})
    )

    def _slow(text, instructions, system_prompt):
        time.sleep(0.3)
        return ProviderAttemptResult(succeeded=True, content="late")

    gateway.providers["glm4"].analyze_text = _slow

    result = asyncio.run(gateway.analyze_text("glm4", "text", "Summarize", "system"))

    assert result.succeeded is False
    assert result.failure_kind == "timeout"


def test_upload_runs_submit_poll_analyze_and_removes_temp_file():
    gateway = _upload_gateway()
    provider = _FakeUploadProvider(statuses=["processing", "processed"])
    gateway.providers["qwenLong"] = provider

    result = asyncio.run(gateway.analyze_via_upload("qwenLong", b"%PDF-1.7 body", "pdf", "Summarize", "system"))

    assert result.succeeded is True
    assert result.content == "Summary"
    assert provider.staged_bytes == [b"%PDF-1.7 body"]
    assert provider.staged_paths[0].suffix == ".pdf"
    assert provider.status_calls == 2
    assert provider.analyzed_ids == ["file-9"]
    assert not provider.staged_paths[0].exists()


def test_upload_still_processing_after_max_polls_is_not_fatal():
    gateway = _upload_gateway(max_polls=3)
    provider = _FakeUploadProvider(statuses=[])
    gateway.providers["qwenLong"] = provider

    result = asyncio.run(gateway.analyze_via_upload("qwenLong", b"data", "docx", "Summarize", "system"))

    assert result.succeeded is True
    assert provider.status_calls == 3


def test_upload_submit_failure_cleans_up_temp_file():
    gateway = _upload_gateway()
    provider = _FakeUploadProvider(
        statuses=[],
        submit_error=ProviderCallError("Qwen-Long authentication failed (401).", "http"),
    )
    gateway.providers["qwenLong"] = provider

    result = asyncio.run(gateway.analyze_via_upload("qwenLong", b"data", "pdf", "Summarize", "system"))

    assert result.succeeded is False
    assert result.failure_kind == "http"
    assert not provider.staged_paths[0].exists()


def test_hung_status_check_is_abandoned_and_polling_continues():
    gateway = _upload_gateway(max_polls=2, poll_timeout=0.05)
    provider = _FakeUploadProvider(statuses=[])
    release = threading.Event()

    def _hung_status(file_id):
        provider.status_calls += 1
        release.wait(1.0)
        return "processed"

    provider.file_status = _hung_status
    gateway.providers["qwenLong"] = provider

    try:
        result = asyncio.run(gateway.analyze_via_upload("qwenLong", b"data", "pdf", "Summarize", "system"))
    finally:
        release.set()

    assert result.succeeded is True
    assert provider.status_calls == 2
    assert provider.analyzed_ids == ["file-9"]
    assert not provider.staged_paths[0].exists()


def test_provider_calls_run_on_the_gateway_pool():
    gateway = ProviderGateway(parse_service_config({"glm4": {"apiKey": "key", "model": "glm-4"}}))
    seen_threads: list[str] = []

    def _record(text, instructions, system_prompt):
        seen_threads.append(threading.current_thread().name)
        return ProviderAttemptResult(succeeded=True, content="ok")

    gateway.providers["glm4"].analyze_text = _record

    result = asyncio.run(gateway.analyze_text("glm4", "text", "Summarize", "system"))

    assert result.succeeded is True
    assert seen_threads[0].startswith("linkreader-provider")
    assert gateway.executor._max_workers == PROVIDER_WORKERS
