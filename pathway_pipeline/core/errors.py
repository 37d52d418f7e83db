"""Exception taxonomy for the pipeline."""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline errors."""


class IndexLoadError(PipelineError):
    """A classification table could not be loaded or violates an index invariant. Fatal."""


class CollaboratorError(PipelineError):
    """Completion or embedding collaborator failed (transport, empty or malformed payload)."""


class ToolError(PipelineError):
    """A retrieval tool invocation failed."""

    def __init__(self, tool: str, detail: str):
        super().__init__(f"{tool}: {detail}")
        self.tool = tool
        self.detail = detail
