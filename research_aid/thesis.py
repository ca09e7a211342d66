"""Investment thesis notes and the phase-grouped research checklist."""

import re
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from research_aid.entities import ChecklistItem, ThesisNote

# (phase label, [(item id, item label), ...])
CHECKLIST_PHASES: List[Tuple[str, List[Tuple[str, str]]]] = [
    ("Phase 1 - Context", [
        ("ctx-1", "Market cycle analysis"),
        ("ctx-2", "Macro environment review"),
        ("ctx-3", "Sector overview"),
    ]),
    ("Phase 2 - Positioning", [
        ("pos-1", "Define comp group"),
        ("pos-2", "Select anchor stock"),
        ("pos-3", "Identify competitive positioning"),
    ]),
    ("Phase 3 - Financial Foundation", [
        ("fin-1", "Income statement analysis"),
        ("fin-2", "Balance sheet analysis"),
        ("fin-3", "Cash flow statement analysis"),
    ]),
    ("Phase 4 - Valuation", [
        ("val-1", "Forecast revenue and margins"),
        ("val-2", "Build DCF model"),
        ("val-3", "Cross-check with comps"),
        ("val-4", "Sensitivity analysis"),
    ]),
    ("Phase 5 - Conclusion", [
        ("con-1", "Target price"),
        ("con-2", "Risk/reward summary"),
        ("con-3", "Final investment report"),
    ]),
]

LEGACY_ID_PATTERN = re.compile(r'^\d+$')


def default_checklist() -> List[ChecklistItem]:
    """Fresh copy of the canonical checklist, nothing done."""
    return [
        ChecklistItem(id=item_id, label=label)
        for _, items in CHECKLIST_PHASES
        for item_id, label in items
    ]


def empty_note(ticker: str) -> ThesisNote:
    return ThesisNote(ticker=ticker, checklist=default_checklist())


def is_legacy_checklist(items: List[ChecklistItem]) -> bool:
    """Old notes numbered their checklist items "1", "2", ..."""
    return bool(items) and all(LEGACY_ID_PATTERN.match(item.id) for item in items)


def merge_checklist(stored: List[ChecklistItem]) -> List[ChecklistItem]:
    """
    Reconcile a stored checklist with the canonical item set.

    Legacy numeric-id checklists are replaced wholesale by the defaults.
    Otherwise the stored items are kept as-is (including their done state)
    and canonical items missing from storage are appended in canonical order.
    """
    if is_legacy_checklist(stored):
        return default_checklist()

    stored_ids = {item.id for item in stored}
    merged = [replace(item) for item in stored]
    merged.extend(item for item in default_checklist() if item.id not in stored_ids)
    return merged


def hydrate_note(stored: Optional[Dict[str, Any]], ticker: str) -> ThesisNote:
    """
    Build a ThesisNote from a stored document.

    Missing fields take their empty-note defaults and the checklist is
    reconciled with merge_checklist. A missing or unreadable document yields
    an empty note.
    """
    if not isinstance(stored, dict):
        return empty_note(ticker)

    document = {**empty_note(ticker).to_dict(), **stored, 'ticker': ticker}
    try:
        note = ThesisNote.from_dict(document)
    except (TypeError, ValueError):
        return empty_note(ticker)

    return replace(note, checklist=merge_checklist(note.checklist))


def toggle_item(note: ThesisNote, item_id: str) -> ThesisNote:
    """Return a copy of note with one checklist item's done flag flipped."""
    return replace(note, checklist=[
        replace(item, done=not item.done) if item.id == item_id else replace(item)
        for item in note.checklist
    ])


def phase_progress(note: ThesisNote) -> List[Tuple[str, int, int]]:
    """
    Completion per checklist phase as (label, done, total).

    Items outside the canonical phases are not counted.
    """
    by_id = {item.id: item for item in note.checklist}
    progress = []
    for label, items in CHECKLIST_PHASES:
        present = [by_id[item_id] for item_id, _ in items if item_id in by_id]
        progress.append((label, sum(1 for item in present if item.done), len(present)))
    return progress
