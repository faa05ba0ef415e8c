from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from linkreader.fetching import FetchRequest
from linkreader.orchestrator import Orchestrator
from linkreader.schema_models import INVALID_PARAMS, METHOD_NOT_FOUND, RpcError, ToolResponse

logger = logging.getLogger(__name__)

SERVICE_RESOURCE_URI = "web://content"
SERVICE_DESCRIPTION = (
    "Reads a link and returns readable text: webpages, images, PDF, Word and spreadsheet "
    "documents, video files and short-video pages."
)


@dataclass(frozen=True)
class McpTool:
    name: str
    description: str
    input_schema: dict


ToolHandler = Callable[[Orchestrator, dict], Awaitable[ToolResponse]]


async def _read_link(orchestrator: Orchestrator, arguments: dict) -> ToolResponse:
    outcome = await orchestrator.read(FetchRequest(target=arguments["url"], user_prompt=arguments.get("prompt")))
    return ToolResponse.from_text(outcome.text, is_error=not outcome.succeeded)


def _tool_manifest() -> dict[str, tuple[McpTool, ToolHandler]]:
    return {
        "read_link": (
            McpTool(
                name="read_link",
                description=(
                    "Read the content behind a URL or data URL and return it as text. Supports webpages, "
                    "images (jpg, png, gif, webp), PDF, Word (doc, docx), spreadsheets (xls, xlsx, csv), "
                    "video files (mp4, avi, mov, mkv) and short-video links."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "url": {
                            "type": "string",
                            "description": "The link to read: an http(s) URL or a data URL.",
                        },
                        "prompt": {
                            "type": "string",
                            "description": "Optional instruction for how the content should be analysed.",
                        },
                    },
                    "required": ["url"],
                    "additionalProperties": False,
                },
            ),
            _read_link,
        ),
    }


def tools_list() -> dict:
    manifests = _tool_manifest()
    return {
        "tools": [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.input_schema,
            }
            for tool, _handler in manifests.values()
        ]
    }


def _validate_arguments(tool: McpTool, arguments: dict) -> tuple[bool, str | None]:
    if not isinstance(arguments, dict):
        return False, "Arguments must be an object."

    properties = tool.input_schema.get("properties") or {}
    for key in arguments.keys():
        if key not in properties:
            return False, f"Unexpected argument '{key}'."

    for key in tool.input_schema.get("required") or []:
        if key not in arguments:
            return False, f"Missing required argument '{key}'."

    for key, value in arguments.items():
        if properties[key].get("type") == "string" and value is not None and not isinstance(value, str):
            return False, f"Argument '{key}' must be a string."

    url = arguments.get("url")
    if url is not None and not url.strip():
        return False, "Argument 'url' must not be empty."
    return True, None


async def tools_call(orchestrator: Orchestrator, name: str, arguments: dict | None = None) -> ToolResponse:
    tool_entry = _tool_manifest().get(name)
    if tool_entry is None:
        raise RpcError(METHOD_NOT_FOUND, f"Unknown tool '{name}'.", {"tool": name})

    tool, handler = tool_entry
    payload_args = arguments if arguments is not None else {}
    valid, error = _validate_arguments(tool, payload_args)
    if not valid:
        raise RpcError(INVALID_PARAMS, error or "Invalid arguments.", {"tool": name})

    logger.info("Calling tool %s", name)
    return await handler(orchestrator, payload_args)


def resources_list() -> dict:
    return {
        "resources": [
            {
                "uri": SERVICE_RESOURCE_URI,
                "name": "Web Content Reader",
                "description": SERVICE_DESCRIPTION,
                "mimeType": "text/plain",
            }
        ]
    }


def resource_read(uri: str | None) -> dict:
    if uri != SERVICE_RESOURCE_URI:
        raise RpcError(INVALID_PARAMS, f"Unknown resource '{uri}'.", {"uri": uri})
    return {
        "contents": [
            {
                "uri": SERVICE_RESOURCE_URI,
                "mimeType": "text/plain",
                "text": f"{SERVICE_DESCRIPTION} Use the read_link tool with a 'url' argument.",
            }
        ]
    }
