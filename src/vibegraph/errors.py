"""Error taxonomy shared by the graph, profile and classification layers."""

from __future__ import annotations


class VibeGraphError(Exception):
    """Base class for all library errors."""


class TransientIOError(VibeGraphError):
    """Network or upstream API failure that may succeed on retry."""


class ConflictError(VibeGraphError):
    """A handle and an entity id resolve to two different existing nodes.

    Resolved deterministically by the identity resolver (the handle match
    wins); only used to describe the conflict in logs and audit events.
    """

    def __init__(self, handle: str, entity_id: str, displaced_handle: str) -> None:
        self.handle = handle
        self.entity_id = entity_id
        self.displaced_handle = displaced_handle
        super().__init__(
            f"entity_id {entity_id!r} moved from @{displaced_handle} to @{handle}"
        )


class OutputValidationError(VibeGraphError):
    """LLM output could not be turned into schema-valid results."""


class PartialBatchError(VibeGraphError):
    """One or more items of a batch operation failed."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        preview = "; ".join(self.errors[:3])
        super().__init__(f"{len(self.errors)} item(s) failed: {preview}")


class NotFoundError(VibeGraphError):
    """A referenced person or organization could not be resolved."""
