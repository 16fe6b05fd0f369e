"""
Extraction stage functions

Five thin functions over the Model Call Gateway. Each takes the previous
stage's output and returns a tagged result carrying the raw model text for
audit. An empty input skips the model call and yields an empty result.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import config
from core.base import ProviderError
from core.gateway import (
    COMPONENT_EXTRACTION, ELEMENT_EXTRACTION, ANCHORING,
    VLM_LABELING, ACCURACY_VALIDATION, Usage
)
from core.parsing import EMPTY, PARTIAL, COMPLETE
from core.prompts import (
    COMPONENT_EXTRACTION_PROMPT, with_component_list,
    with_element_list, with_detections
)
from geometry import (
    PixelBox, GeometryError, normalize_box,
    is_valid_pixel_box, pixel_box_from_dict
)
from utils.validation import normalize_cta_type, normalize_reusable


# Element labeling status
DETECTED = 'Detected'
NOT_DETECTED = 'Not Detected'
DETECTION_ERROR = 'Error'
OVERWRITE = 'Overwrite'

COORDINATE_SCALING_ERROR = 'Coordinate scaling failed'


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class ComponentSpec:
    name: str
    description: str
    cta_type: str = 'none'
    reusable: bool = False


@dataclass
class ComponentDiscovery:
    status: str
    components: List[ComponentSpec] = field(default_factory=list)
    raw_text: str = ''
    usage: List[Usage] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.components]


@dataclass
class ElementDiscovery:
    """Flat map of "Component > Element" label -> description"""
    status: str
    elements: Dict[str, str] = field(default_factory=dict)
    raw_text: str = ''
    usage: List[Usage] = field(default_factory=list)


@dataclass
class Detection:
    """Detector answer for one label; every box is its own element"""
    label: str
    description: str
    status: str
    boxes: List[PixelBox] = field(default_factory=list)
    error: Optional[str] = None
    inference_time_ms: int = 0
    model: Optional[str] = None
    component_id: Optional[int] = None
    raw_text: str = ''
    usage: List[Usage] = field(default_factory=list)


@dataclass
class BoxCandidate:
    """A detected box offered for accuracy scoring"""
    key: str
    label: str
    description: str
    box: PixelBox


@dataclass
class AccuracyScore:
    key: str
    label: str
    accuracy: int
    hidden: bool = False
    suggested: Optional[PixelBox] = None
    explanation: str = ''

    @property
    def status(self) -> Optional[str]:
        return OVERWRITE if self.suggested is not None else None


@dataclass
class AccuracyReport:
    status: str
    scores: List[AccuracyScore] = field(default_factory=list)
    raw_text: str = ''
    usage: List[Usage] = field(default_factory=list)


# ============================================================
# HELPERS
# ============================================================

def _result_status(parse_status, kept, dropped):
    if not kept:
        return EMPTY
    if dropped or parse_status != COMPLETE:
        return PARTIAL
    return COMPLETE


def _flatten(mapping, prefix=''):
    """Flatten nested {"A": {"B": "desc"}} into {"A > B": "desc"}"""
    flat = {}
    for key, value in mapping.items():
        label = f"{prefix} > {key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, label))
        else:
            flat[label] = value
    return flat


def _unique_name(name, seen):
    if name not in seen:
        return name
    index = 2
    while f"{name} {index}" in seen:
        index += 1
    return f"{name} {index}"


def _clamp_score(value):
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, score))


# ============================================================
# STAGE 1 - COMPONENT DISCOVERY
# ============================================================

async def discover_components(gateway, image, tracking) -> ComponentDiscovery:
    """Whole screenshot in, list of named high-level sections out"""
    result = await gateway.invoke(COMPONENT_EXTRACTION, COMPONENT_EXTRACTION_PROMPT, image, tracking)

    components = []
    seen = set()
    dropped = 0

    for item in result.parsed.as_list():
        if not isinstance(item, dict):
            dropped += 1
            continue

        name = item.get('component_name', item.get('name'))
        description = item.get('description')
        if not isinstance(name, str) or not name.strip() or not isinstance(description, str):
            dropped += 1
            continue

        name = _unique_name(name.strip(), seen)
        seen.add(name)
        components.append(ComponentSpec(
            name=name,
            description=description.strip(),
            cta_type=normalize_cta_type(item.get('cta_type')),
            reusable=normalize_reusable(item.get('reusable'))
        ))

    return ComponentDiscovery(
        status=_result_status(result.parsed.status, components, dropped),
        components=components,
        raw_text=result.raw_text,
        usage=[result.usage]
    )


# ============================================================
# STAGE 2 - ELEMENT DISCOVERY
# ============================================================

async def discover_elements(gateway, image, components: ComponentDiscovery, tracking) -> ElementDiscovery:
    """Screenshot + component names in, flat label -> description map out"""
    if not components.components:
        return ElementDiscovery(status=EMPTY)

    result = await gateway.invoke(ELEMENT_EXTRACTION, with_component_list(components.names), image, tracking)

    elements = {}
    dropped = 0
    for label, description in _flatten(result.parsed.as_mapping()).items():
        if isinstance(description, str) and description.strip() and label.strip():
            elements[label.strip()] = description.strip()
        else:
            dropped += 1

    return ElementDiscovery(
        status=_result_status(result.parsed.status, elements, dropped),
        elements=elements,
        raw_text=result.raw_text,
        usage=[result.usage]
    )


# ============================================================
# STAGE 3 - SPATIAL ANCHORING
# ============================================================

async def anchor_elements(gateway, image, elements: ElementDiscovery, tracking) -> ElementDiscovery:
    """
    Rewrite descriptions so repeated elements can be told apart.

    Keys are those of the input. A label the model left out keeps its
    stage-2 description and the result is tagged partial.
    """
    if not elements.elements:
        return ElementDiscovery(status=EMPTY)

    prompt = with_element_list(json.dumps(elements.elements, indent=2, ensure_ascii=False))
    result = await gateway.invoke(ANCHORING, prompt, image, tracking)

    answered = _flatten(result.parsed.as_mapping())
    anchored = {}
    fallbacks = 0

    for label, description in elements.elements.items():
        rewritten = answered.get(label)
        if isinstance(rewritten, str) and rewritten.strip():
            anchored[label] = rewritten.strip()
        else:
            anchored[label] = description
            fallbacks += 1

    if fallbacks:
        print(f"[{tracking.screenshot_id}] Anchoring left {fallbacks}/{len(anchored)} descriptions unchanged", flush=True)

    return ElementDiscovery(
        status=PARTIAL if fallbacks or result.parsed.status != COMPLETE else COMPLETE,
        elements=anchored,
        raw_text=result.raw_text,
        usage=[result.usage]
    )


# ============================================================
# STAGE 4 - GEOMETRIC DETECTION
# ============================================================

async def detect_element(gateway, image, label, description, tracking) -> Detection:
    """One detector call for one label, boxes scaled to pixels"""
    result = await gateway.invoke(VLM_LABELING, description, image, tracking)

    boxes = []
    error = None
    for obj in result.parsed.as_mapping().get('objects') or []:
        try:
            box = normalize_box(obj, image.width, image.height)
        except GeometryError as e:
            print(f"WARNING: [{tracking.screenshot_id}] '{label}' box skipped: {e}", flush=True)
            error = COORDINATE_SCALING_ERROR
            continue

        if not is_valid_pixel_box(box, image.width, image.height):
            print(f"WARNING: [{tracking.screenshot_id}] '{label}' box out of range: {box.to_dict()}", flush=True)
            error = COORDINATE_SCALING_ERROR
            continue

        boxes.append(box)

    if boxes:
        status = DETECTED
    elif error:
        status = DETECTION_ERROR
    else:
        status = NOT_DETECTED

    return Detection(
        label=label,
        description=description,
        status=status,
        boxes=boxes,
        error=error,
        inference_time_ms=result.usage.duration_ms,
        model=result.usage.model,
        component_id=tracking.component_id,
        raw_text=result.raw_text,
        usage=[result.usage]
    )


async def detect_elements(gateway, image, anchored: ElementDiscovery, tracking,
                          component_ids: Dict[str, int], cancel_token=None) -> List[Detection]:
    """
    Run the detector once per anchored label, in label order.

    Args:
        component_ids: label -> owning component_id, used for logging context
        cancel_token: checked between labels
    """
    detections = []
    for label, description in anchored.elements.items():
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        detections.append(await detect_element(
            gateway, image, label, description,
            tracking.narrow(component_id=component_ids.get(label))
        ))

    return detections


# ============================================================
# STAGE 5 - ACCURACY SCORING (best effort)
# ============================================================

async def score_accuracy(gateway, image, candidates: List[BoxCandidate], tracking) -> AccuracyReport:
    """
    Score every detected box 0-100 against the screenshot.

    A suggested box is kept only when the score is below the low threshold
    and the box fits the image. Provider failures leave the boxes unscored.
    """
    if not candidates:
        return AccuracyReport(status=EMPTY)

    payload = [
        {
            'id': c.key,
            'label': c.label,
            'description': c.description,
            'coordinates': c.box.to_dict()
        }
        for c in candidates
    ]

    try:
        result = await gateway.invoke(
            ACCURACY_VALIDATION,
            with_detections(json.dumps(payload, indent=2, ensure_ascii=False)),
            image,
            tracking
        )
    except ProviderError as e:
        print(f"[{tracking.screenshot_id}] Accuracy scoring skipped: {e}", flush=True)
        return AccuracyReport(status=EMPTY)

    by_key = {c.key: c for c in candidates}
    unscored_by_label = {}
    for c in candidates:
        unscored_by_label.setdefault(c.label, []).append(c)

    scores = []
    for item in result.parsed.as_list():
        if not isinstance(item, dict):
            continue

        candidate = by_key.get(str(item.get('id')))
        if candidate is None and isinstance(item.get('label'), str):
            same_label = unscored_by_label.get(item['label']) or []
            candidate = same_label[0] if same_label else None
        if candidate is None:
            continue

        accuracy = _clamp_score(item.get('accuracy'))
        if accuracy is None:
            continue

        suggested = None
        if accuracy < config.ACCURACY_THRESHOLD_LOW:
            proposed = pixel_box_from_dict(item.get('suggested_coordinates'))
            if proposed is not None and is_valid_pixel_box(proposed, image.width, image.height):
                suggested = proposed

        scores.append(AccuracyScore(
            key=candidate.key,
            label=candidate.label,
            accuracy=accuracy,
            hidden=bool(item.get('hidden', False)),
            suggested=suggested,
            explanation=str(item.get('explanation') or '')
        ))

        # Each candidate is scored at most once
        del by_key[candidate.key]
        unscored_by_label[candidate.label].remove(candidate)

    return AccuracyReport(
        status=_result_status(result.parsed.status, scores, len(by_key)),
        scores=scores,
        raw_text=result.raw_text,
        usage=[result.usage]
    )
