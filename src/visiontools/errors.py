from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Remote bodies quoted in error messages are cut to this many characters.
MAX_BODY_CHARS = 200

ABSOLUTE_PATH_MESSAGE = "Please provide a global (absolute) file path instead of a local one."


class VisionToolError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SchemaIssue:
    path: tuple[str | int, ...]
    code: str
    message: str

    @property
    def location(self) -> str:
        return ".".join(str(part) for part in self.path) or "<root>"

    def __str__(self) -> str:
        return f"{self.location} ({self.code}): {self.message}"


class ValidationError(VisionToolError):
    def __init__(self, issues: list[SchemaIssue], *, tool_name: str | None = None) -> None:
        self.issues = list(issues)
        self.tool_name = tool_name
        super().__init__(self._render())

    def _render(self) -> str:
        detail = ", ".join(str(issue) for issue in self.issues)
        if self.tool_name:
            return f"Invalid arguments for tool '{self.tool_name}': {detail}"
        return f"Invalid arguments: {detail}"

    def for_tool(self, tool_name: str) -> "ValidationError":
        return ValidationError(self.issues, tool_name=tool_name)


class PathResolutionError(VisionToolError):
    pass


class FileAccessError(VisionToolError):
    pass


class TransportError(VisionToolError):
    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RequestSetupError(VisionToolError):
    pass


class RemoteApiError(VisionToolError):
    def __init__(self, status_code: int, reason: str | None, body: Any) -> None:
        super().__init__(f"Remote API returned status {status_code}", status_code=status_code)
        self.reason = reason
        self.body = body


class SerializationError(VisionToolError):
    pass


class CatalogError(VisionToolError):
    pass


class UnknownToolError(VisionToolError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Error: Unknown tool requested: {tool_name}")
        self.tool_name = tool_name


def _truncate(text: str) -> str:
    if len(text) > MAX_BODY_CHARS:
        return text[:MAX_BODY_CHARS] + "..."
    return text


def _describe_remote(exc: RemoteApiError) -> str:
    reason = exc.reason or "Status text not available"
    message = f"API Error: Status {exc.status_code} ({reason}). "
    body = exc.body
    if isinstance(body, str):
        # An empty string body still counts as "no body".
        if not body:
            return message + "No response body received."
        return message + f"Response: {_truncate(body)}"
    if body is None or body == b"":
        return message + "No response body received."
    try:
        rendered = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return message + "Response: [Could not serialize data]"
    return message + f"Response: {_truncate(rendered)}"


def describe_error(exc: BaseException) -> str:
    """Collapse any failure into the single line handed back to the host."""
    if isinstance(exc, RemoteApiError):
        text = _describe_remote(exc)
    elif isinstance(exc, TransportError):
        text = "API Network Error: No response received from server."
        if exc.code:
            text += f" (Code: {exc.code})"
    elif isinstance(exc, RequestSetupError):
        text = f"API Request Setup Error: {exc}"
    else:
        text = str(exc) or f"Unexpected error: {type(exc).__name__}"
    return " ".join(text.split("\n")).strip()
