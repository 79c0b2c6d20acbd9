"""Load context passed to lifecycle hooks."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

__all__ = ["Context"]


@dataclass
class Context:
    """Context handed to lifecycle hooks that accept a parameter."""

    trace_id: str
    module_name: str | None = None
    load_chain: list[str] = field(default_factory=list)
    dispatcher: Any = None
    config: Any = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        dispatcher: Any = None,
        config: Any = None,
        data: dict[str, Any] | None = None,
    ) -> Context:
        """Create a new top-level Context with a generated UUID v4 trace_id."""
        return cls(
            trace_id=str(uuid.uuid4()),
            module_name=None,
            load_chain=[],
            dispatcher=dispatcher,
            config=config,
            data=data if data is not None else {},
        )

    def child(self, module_name: str) -> Context:
        """Create a child Context for initializing ``module_name``.

        ``data`` is shared with the parent so nested loads see the same dict.
        """
        return Context(
            trace_id=self.trace_id,
            module_name=module_name,
            load_chain=[*self.load_chain, module_name],
            dispatcher=self.dispatcher,
            config=self.config,
            data=self.data,
        )
