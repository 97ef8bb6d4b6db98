"""Request and response shapes exchanged with the CM server."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Command(BaseModel):
    """A named CM command with its options.

    Attributes:
        name: Command name, e.g. ``projectinfo``.
        options: Option values keyed by option name; ``True`` marks a bare flag.
        selection: Positional selection (member names, project paths).
    """

    name: str
    options: Dict[str, Any] = Field(default_factory=dict)
    selection: List[str] = Field(default_factory=list)

    def describe(self) -> str:
        """Return a readable command line for logs."""
        parts = [self.name]
        for key, value in self.options.items():
            parts.append(f"--{key}" if value is True else f"--{key}={value}")
        parts.extend(self.selection)
        return " ".join(parts)


class WorkItem(BaseModel):
    """One result record returned by a command.

    Attributes:
        id: Identifier of the record (member name, project path, ...).
        model_type: Server-side model of the record, e.g. ``si.Member``.
        fields: Named field values.
    """

    id: str
    model_type: str = ""
    fields: Dict[str, Any] = Field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        """Return the value of field ``name`` or ``default``."""
        return self.fields.get(name, default)


class Response(BaseModel):
    """Structured response to a command.

    Attributes:
        command: Command line that produced the response.
        exit_code: Exit status; non-zero means the command failed.
        work_items: Result records in server order.
        message: Optional diagnostic text supplied by the server.
    """

    command: str
    exit_code: int = 0
    work_items: List[WorkItem] = Field(default_factory=list)
    message: Optional[str] = None

    def first(self) -> WorkItem:
        """Return the first work item.

        Raises:
            LookupError: If the response carries no work items.
        """
        if not self.work_items:
            raise LookupError(f"{self.command} returned no work items")
        return self.work_items[0]

    def get_work_item(self, item_id: str) -> WorkItem:
        """Return the work item identified by ``item_id``.

        Raises:
            LookupError: If no such work item exists.
        """
        for item in self.work_items:
            if item.id == item_id:
                return item
        raise LookupError(f"{self.command} returned no work item for {item_id}")


__all__ = ["Command", "WorkItem", "Response"]
