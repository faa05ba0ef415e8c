from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RpcError(Exception):
    """Raised by method handlers; the dispatcher turns it into an error envelope."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


class RpcRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    jsonrpc: str = JSONRPC_VERSION
    id: Any = None
    method: str = Field(min_length=1)
    params: dict[str, Any] | None = None


class ContentBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResponse(BaseModel):
    """Result of a tool invocation; always carries at least one content block."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[ContentBlock] = Field(min_length=1)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def from_text(cls, text: str, is_error: bool = False) -> ToolResponse:
        return cls(content=[ContentBlock(text=text or "(empty response)")], is_error=is_error)

    def to_result(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def success_envelope(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_envelope(request_id: Any, error: RpcError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_dict()}
