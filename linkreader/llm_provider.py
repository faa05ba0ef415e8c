from __future__ import annotations

import base64
import json
import logging
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib import error, request

import httpx

from linkreader.config import ProviderSettings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = {
    "seed": "https://ark.cn-beijing.volces.com/api/v3",
    "volcengine": "https://ark.cn-beijing.volces.com/api/v3",
    "qwen": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    "qwenLong": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    "glm4": "https://open.bigmodel.cn/api/paas/v4",
}

PROVIDER_DISPLAY_NAMES = {
    "seed": "Doubao Seed",
    "volcengine": "Volcengine Ark",
    "qwen": "Qwen",
    "qwenLong": "Qwen-Long",
    "glm4": "GLM-4",
    "local": "Local passthrough",
}

HTTP_STATUS_MESSAGES = {
    400: "bad request (400): the request parameters were rejected",
    401: "authentication failed (401): the API key is invalid or expired, check apiKey in the config file",
    403: "permission denied (403): the account may not use this model",
    404: "model not found (404): the model name may be wrong",
    429: "rate limited (429): too many requests, retry later",
    500: "server error (500): the service is temporarily unavailable",
    502: "service unavailable (502): bad gateway",
    503: "service unavailable (503): try again later",
}


@dataclass(frozen=True)
class ProviderCapabilitySet:
    supports_text: bool = True
    supports_image: bool = False
    supports_file_upload: bool = False


@dataclass(frozen=True)
class ProviderAttemptResult:
    succeeded: bool
    content: str | None = None
    usage: dict[str, Any] = field(default_factory=dict)
    failure_reason: str | None = None
    failure_kind: str | None = None
    provider: str = ""
    model: str = ""

    @classmethod
    def failure(cls, provider: str, reason: str, kind: str, model: str = "") -> ProviderAttemptResult:
        return cls(succeeded=False, failure_reason=reason, failure_kind=kind, provider=provider, model=model)


@dataclass(frozen=True)
class UploadedFile:
    file_id: str
    status: str
    filename: str = ""


class ProviderCallError(Exception):
    def __init__(self, reason: str, kind: str):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float = 90.0) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers=headers, method="POST")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _get_json(url: str, headers: dict[str, str], timeout: float = 30.0) -> dict[str, Any]:
    req = request.Request(url, headers=headers, method="GET")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _upload_file(
    url: str,
    file_path: Path,
    filename: str,
    headers: dict[str, str],
    timeout: float = 60.0,
) -> dict[str, Any]:
    with file_path.open("rb") as handle:
        response = httpx.post(
            url,
            headers=headers,
            data={"purpose": "file-extract"},
            files={"file": (filename, handle, "application/octet-stream")},
            timeout=timeout,
        )
    response.raise_for_status()
    return response.json()


def _error_body_message(body: str) -> str:
    if not body:
        return ""
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return body[:200]

    if isinstance(parsed, dict):
        error_payload = parsed.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        message = parsed.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return ""


def describe_http_error(provider_name: str, status: int, body: str = "") -> str:
    """Human-readable reason for an HTTP failure, e.g. `Qwen authentication failed (401): ...`."""
    display_name = PROVIDER_DISPLAY_NAMES.get(provider_name, provider_name)
    base = HTTP_STATUS_MESSAGES.get(status)
    message = f"{display_name} {base}" if base else f"{display_name} HTTP error {status}"

    detail = _error_body_message(body)
    if detail:
        return f"{message}: {detail}"
    return f"{message}."


def _read_error_body(exc: error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace").strip()
    except Exception:  # noqa: BLE001
        return ""


def translate_exception(provider_name: str, exc: Exception) -> ProviderCallError:
    display_name = PROVIDER_DISPLAY_NAMES.get(provider_name, provider_name)

    if isinstance(exc, ProviderCallError):
        return exc
    if isinstance(exc, error.HTTPError):
        return ProviderCallError(describe_http_error(provider_name, exc.code, _read_error_body(exc)), "http")
    if isinstance(exc, httpx.HTTPStatusError):
        return ProviderCallError(
            describe_http_error(provider_name, exc.response.status_code, exc.response.text),
            "http",
        )
    if isinstance(exc, error.URLError):
        if isinstance(exc.reason, (socket.timeout, TimeoutError)):
            return ProviderCallError(f"{display_name} request timed out.", "timeout")
        return ProviderCallError(f"{display_name} request failed: {exc.reason}", "network")
    if isinstance(exc, (socket.timeout, TimeoutError, httpx.TimeoutException)):
        return ProviderCallError(f"{display_name} request timed out.", "timeout")
    if isinstance(exc, httpx.HTTPError):
        return ProviderCallError(f"{display_name} request failed: {exc}", "network")
    if isinstance(exc, (json.JSONDecodeError, KeyError, TypeError, ValueError)):
        return ProviderCallError(f"{display_name} returned a malformed response: {exc}", "malformed_response")
    return ProviderCallError(f"{display_name} request failed: {exc}", "network")


def _extract_chat_text(response_payload: dict[str, Any]) -> str | None:
    choices = response_payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None

    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, str) and content.strip():
        return content.strip()

    if isinstance(content, list):
        parts = [
            part.get("text").strip()
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str) and part.get("text").strip()
        ]
        if parts:
            return "\n".join(parts)
    return None


class OpenAICompatibleProvider:
    """Chat-completions backend addressed through an OpenAI-compatible HTTP API."""

    def __init__(self, name: str, settings: ProviderSettings, timeout: float = 90.0):
        self.name = name
        self.settings = settings
        self.timeout = timeout
        self.base_url = (settings.base_url or DEFAULT_BASE_URLS.get(name, "")).rstrip("/")
        self.model = settings.model

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES.get(self.name, self.name)

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured and bool(self.base_url)

    def _headers(self, content_type: str | None = "application/json") -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def chat(self, messages: list[dict[str, Any]], max_tokens: int = 4000, temperature: float = 0.1) -> ProviderAttemptResult:
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        try:
            response_payload = _post_json(
                f"{self.base_url}/chat/completions",
                payload,
                self._headers(),
                timeout=self.timeout,
            )
            content = _extract_chat_text(response_payload)
            if content is None:
                raise ProviderCallError(
                    f"{self.display_name} response did not include message content.",
                    "malformed_response",
                )
        except Exception as exc:  # noqa: BLE001
            translated = translate_exception(self.name, exc)
            logger.warning("%s chat call failed: %s", self.display_name, translated.reason)
            return ProviderAttemptResult.failure(self.name, translated.reason, translated.kind, model=self.model)

        usage = response_payload.get("usage")
        return ProviderAttemptResult(
            succeeded=True,
            content=content,
            usage=usage if isinstance(usage, dict) else {},
            provider=self.name,
            model=str(response_payload.get("model") or self.model),
        )

    def analyze_text(self, text: str, instructions: str, system_prompt: str) -> ProviderAttemptResult:
        return self.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f"{instructions}\n\n{text}"},
            ]
        )

    def analyze_image(
        self,
        image_bytes: bytes,
        instructions: str,
        system_prompt: str,
        mime_type: str = "image/jpeg",
    ) -> ProviderAttemptResult:
        encoded_image = base64.b64encode(image_bytes).decode("ascii")
        return self.chat(
            [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded_image}"}},
                        {"type": "text", "text": instructions},
                    ],
                },
            ],
            max_tokens=2000,
        )

    def submit_file(self, file_path: Path, filename: str, timeout: float = 60.0) -> UploadedFile:
        try:
            response_payload = _upload_file(
                f"{self.base_url}/files",
                file_path,
                filename,
                self._headers(content_type=None),
                timeout=timeout,
            )
            file_id = response_payload["id"]
        except Exception as exc:  # noqa: BLE001
            raise translate_exception(self.name, exc) from exc

        return UploadedFile(
            file_id=str(file_id),
            status=str(response_payload.get("status") or "processed"),
            filename=str(response_payload.get("filename") or filename),
        )

    def file_status(self, file_id: str) -> str:
        try:
            response_payload = _get_json(f"{self.base_url}/files/{file_id}", self._headers(content_type=None))
        except Exception as exc:  # noqa: BLE001
            raise translate_exception(self.name, exc) from exc
        return str(response_payload.get("status") or "")

    def analyze_file_reference(self, file_id: str, instructions: str, system_prompt: str) -> ProviderAttemptResult:
        return self.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "system", "content": f"fileid://{file_id}"},
                {"role": "user", "content": instructions},
            ]
        )


class LocalPassthroughProvider:
    """Returns already-extracted text as the answer; never touches the network."""

    name = "local"
    model = "passthrough"
    is_configured = True

    def analyze_text(self, text: str, instructions: str = "", system_prompt: str = "") -> ProviderAttemptResult:
        if not text.strip():
            return ProviderAttemptResult.failure(self.name, "No extracted text to return.", "unsupported", model=self.model)
        return ProviderAttemptResult(succeeded=True, content=text, provider=self.name, model=self.model)
