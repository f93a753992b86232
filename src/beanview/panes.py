from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PaneSpec:
    """One presentation of the bean collection.

    ``statuses`` is the pane's fixed status constraint (empty = unconstrained).
    ``target_status`` is what a bean dropped in from another pane becomes.
    ``local_text`` matches the query client-side across every field instead
    of trusting the store's search.
    Flat panes show every bean at the root because parents usually live in
    another pane.
    """

    name: str
    title: str
    statuses: tuple[str, ...] = ()
    target_status: str | None = None
    flat: bool = False
    local_text: bool = False

    @property
    def accepts_drops(self) -> bool:
        return self.target_status is not None

    def is_native(self, status: str) -> bool:
        if not self.statuses:
            return True
        return status in self.statuses


ACTIVE = PaneSpec(
    name="active",
    title="Open Beans",
    statuses=("todo", "in-progress"),
    target_status="todo",
)
COMPLETED = PaneSpec(
    name="completed",
    title="Completed",
    statuses=("completed",),
    target_status="completed",
    flat=True,
)
DRAFT = PaneSpec(
    name="draft",
    title="Drafts",
    statuses=("draft",),
    target_status="draft",
    flat=True,
)
SCRAPPED = PaneSpec(
    name="scrapped",
    title="Scrapped",
    statuses=("scrapped",),
    target_status="scrapped",
    flat=True,
)
SEARCH = PaneSpec(
    name="search",
    title="Search",
    flat=True,
    local_text=True,
)

PANES: dict[str, PaneSpec] = {
    pane.name: pane for pane in (ACTIVE, COMPLETED, DRAFT, SCRAPPED, SEARCH)
}


def get_pane(name: str) -> PaneSpec:
    key = name.strip().lower()
    pane = PANES.get(key)
    if pane is None:
        raise ValueError(f"unknown pane: {name} (expected one of: {', '.join(PANES)})")
    return pane
