"""
Context Assembler
Resolves a job's per-slot context selections against a character's context
assets into reference image ids and prompt fragments.

Everything here is pure: the caller loads the character's assets once and
passes them in.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from app.schemas.girl import CONTEXT_LABELS, CONTEXT_TYPES, ContextAsset
from app.schemas.job import ContextSelection, ReferenceInputs


def empty_context_assets() -> Dict[str, ContextAsset]:
    return {slot: ContextAsset() for slot in CONTEXT_TYPES}


def normalize_context_assets(raw: Any) -> Dict[str, ContextAsset]:
    """Coerce a stored context-assets blob into one ContextAsset per slot."""
    source = raw if isinstance(raw, dict) else {}
    assets = {}
    for slot in CONTEXT_TYPES:
        entry = source.get(slot)
        if isinstance(entry, ContextAsset):
            assets[slot] = entry
        elif isinstance(entry, dict):
            assets[slot] = ContextAsset(
                image_id=entry.get("image_id") if isinstance(entry.get("image_id"), str) else "",
                description=entry.get("description") if isinstance(entry.get("description"), str) else "",
            )
        else:
            assets[slot] = ContextAsset()
    return assets


@dataclass
class SlotResolution:
    """How one context slot was (or was not) applied to a job."""
    requested_image: bool = False
    requested_text: bool = False
    image_id: Optional[str] = None
    description: str = ""
    applied_image: bool = False
    applied_text: bool = False
    reference_index: Optional[int] = None  # 1-based ordinal in the final reference list

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "requested_image": self.requested_image,
            "requested_text": self.requested_text,
            "image_id": self.image_id,
            "description": self.description,
            "applied_image": self.applied_image,
            "applied_text": self.applied_text,
            "reference_index": self.reference_index,
        }


@dataclass
class ContextAssembly:
    """Everything the executor needs from context resolution."""
    slots: Dict[str, SlotResolution]
    manual_image_ids: List[str]
    context_image_ids: Dict[str, str]
    reference_image_ids: List[str]
    reference_positions: Dict[str, int]
    prompt_fragments: List[str] = field(default_factory=list)
    prompt: str = ""

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {slot: resolution.to_snapshot() for slot, resolution in self.slots.items()}

    def resolved_references(self) -> Dict[str, Any]:
        return {
            "manual_image_ids": list(self.manual_image_ids),
            "context_image_ids": dict(self.context_image_ids),
            "combined_image_ids": list(self.reference_image_ids),
            "context_reference_positions": dict(self.reference_positions),
        }


def resolve_slots(
    selections: Mapping[str, ContextSelection],
    assets: Mapping[str, ContextAsset],
) -> Dict[str, SlotResolution]:
    """
    Apply selection flags to assets, slot by slot.

    A request the asset cannot satisfy (no image, no description) is demoted
    to not-applied. This is not an error.
    """
    slots = {}
    for slot in CONTEXT_TYPES:
        selection = selections.get(slot) or ContextSelection()
        asset = assets.get(slot) or ContextAsset()
        slots[slot] = SlotResolution(
            requested_image=selection.use_image,
            requested_text=selection.use_text,
            image_id=asset.image_id or None,
            description=asset.description,
            applied_image=selection.use_image and bool(asset.image_id),
            applied_text=selection.use_text and bool(asset.description),
        )
    return slots


def _dedupe(ids: Sequence[str], seen: set) -> List[str]:
    ordered = []
    for image_id in ids:
        if image_id and image_id not in seen:
            ordered.append(image_id)
            seen.add(image_id)
    return ordered


def combine_reference_ids(
    manual_ids: Sequence[str],
    context_ids: Sequence[str],
    fallback_ids: Sequence[str] = (),
) -> Tuple[List[str], List[str]]:
    """
    Build the ordered reference list: manual ids first, then context ids.

    Each id appears once, at its first position. When no manual ids were
    supplied the raw ``fallback_ids`` stand in for them.

    Returns:
        (manual ids actually used, combined ordered ids)
    """
    seen: set = set()
    manual = _dedupe(manual_ids if manual_ids else fallback_ids, seen)
    context = _dedupe(context_ids, seen)
    return manual, manual + context


def reference_positions(
    slots: Mapping[str, SlotResolution],
    combined_ids: Sequence[str],
) -> Dict[str, int]:
    """1-based ordinal of each applied context image in the combined list."""
    index_of = {}
    for position, image_id in enumerate(combined_ids, start=1):
        index_of.setdefault(image_id, position)

    positions = {}
    for slot in CONTEXT_TYPES:
        resolution = slots.get(slot)
        if resolution and resolution.applied_image and resolution.image_id in index_of:
            positions[slot] = index_of[resolution.image_id]
    return positions


def prompt_fragments(slots: Mapping[str, SlotResolution]) -> List[str]:
    """Prompt text for slots whose description was applied."""
    fragments = []
    for slot in CONTEXT_TYPES:
        resolution = slots.get(slot)
        if not resolution or not resolution.applied_text:
            continue
        label = CONTEXT_LABELS.get(slot, slot).lower()
        if resolution.reference_index:
            fragments.append(
                f"Use the {label} from reference image {resolution.reference_index}: "
                f"{resolution.description}"
            )
        else:
            fragments.append(f"Use her {label} as described: {resolution.description}")
    return fragments


def compose_prompt(submitted: Optional[str], fragments: Sequence[str]) -> str:
    """Submitted text, a blank line, then the context fragments."""
    parts = [(submitted or "").strip(), "\n".join(fragments)]
    return "\n\n".join(part for part in parts if part)


def assemble_context(
    prompt: Optional[str],
    inputs: ReferenceInputs,
    assets: Optional[Mapping[str, ContextAsset]] = None,
) -> ContextAssembly:
    """Resolve selections, order references and build the final prompt."""
    slots = resolve_slots(inputs.context_selections, assets or empty_context_assets())

    context_image_ids = {
        slot: resolution.image_id
        for slot, resolution in slots.items()
        if resolution.applied_image and resolution.image_id
    }
    manual, combined = combine_reference_ids(
        inputs.manual_image_ids,
        [context_image_ids[slot] for slot in CONTEXT_TYPES if slot in context_image_ids],
        inputs.image_ids,
    )

    positions = reference_positions(slots, combined)
    for slot, resolution in slots.items():
        resolution.reference_index = positions.get(slot)
        resolution.applied_image = resolution.applied_image and resolution.reference_index is not None

    fragments = prompt_fragments(slots)
    return ContextAssembly(
        slots=slots,
        manual_image_ids=manual,
        context_image_ids=context_image_ids,
        reference_image_ids=combined,
        reference_positions=positions,
        prompt_fragments=fragments,
        prompt=compose_prompt(prompt, fragments),
    )
