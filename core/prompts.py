"""
Prompts for each extraction stage

Anchor density and grouping rules live here, not in code. Tune wording here
and the pipeline stays the same.
"""

# ============================================================
# STAGE 1 - COMPONENT DISCOVERY
# ============================================================

COMPONENT_EXTRACTION_PROMPT = '''Extract the high-level UI components of this screenshot.

<instructions>
You are given a UI screenshot from a mobile or web application.

Return only the key components or main sections a product designer or UX
researcher would name. Do not list low-level elements (buttons, icons, text)
unless they are a standalone CTA or decision point.

Guidelines:
- Group small elements into their logical parent (quantity controls, icons, labels -> Cart Item).
- Treat repeated instances as separate components ("Cart Item 1", "Cart Item 2").
- Include partially visible components if they are still recognizable.
- Ignore decoration: backgrounds, dividers, inert icons, layout-only blocks.

For each component return:
- component_name: human-readable section name ("Header", "Promocode Section")
- description: short description of what is visually included
- cta_type: "primary" | "secondary" | "informational" | "none"
- reusable: true if this is a pattern likely reused across screens
</instructions>

<sample_output>
[
  {"component_name": "Cart Item 1", "description": "Product image, name, price and quantity controls for the first item.", "cta_type": "secondary", "reusable": true},
  {"component_name": "Delivery Options", "description": "Delivery choices with cost and selection state.", "cta_type": "secondary", "reusable": true},
  {"component_name": "Checkout Bar", "description": "Bottom bar with order total and a 'Checkout' button.", "cta_type": "primary", "reusable": false}
]
</sample_output>

Return ONLY the JSON array, no markdown formatting or explanation.'''


# ============================================================
# STAGE 2 - ELEMENT DISCOVERY
# ============================================================

ELEMENT_EXTRACTION_PROMPT = '''You are a UI/UX annotator parsing a screenshot into structured annotations.

<input>
- A UI screenshot
- A list of component names. Each one is a container; group elements under it.
</input>

<task>
1. For each listed component, find its region in the screenshot.
2. Within it, list EVERY visible element individually: icons, buttons, labels,
   values, helper text, input fields, selection indicators, visual states.
3. Keys are hierarchical: "Component > Subcomponent > Element", separator " > ".
   The first segment must be one of the listed component names.
4. Each value describes appearance (shape, color, text, icon), position
   relative to visible neighbors, and state when visible.
   Do not describe intent or behavior. Do not refer to row order
   ("first item") unless the UI labels it.
</task>

<output_format>
{
  "Header > Title": "Centered bold text 'Top Up Receipt' on a confetti background",
  "Cart Item 1 > Quantity Controls > Increase Button": "Plus button on the right of the quantity control, under the title 'Gnocchi'",
  "Primary CTA > Label": "Green full-width button 'Done' with white text"
}
</output_format>

Return ONLY a flat JSON object (no nesting, no nulls, no trailing commas).'''


# ============================================================
# STAGE 3 - SPATIAL ANCHORING
# ============================================================

ANCHOR_ELEMENTS_PROMPT = '''You are rewriting UI element descriptions for a vision model that draws bounding boxes.

Input:
- A UI screenshot
- A flat JSON object of element labels -> short descriptions

Rewrite every description so the element is visually distinct and locatable:
1. Describe the element itself first: shape, size, color, text or icon content.
2. Only for repeated elements (steppers, list rows, identical buttons) add ONE
   anchor to a unique nearby feature, e.g. "in the row showing the item titled
   'Wenzel with raspberries and currants'".
3. Keep the element as the subject; the anchor is context. Write
   "...in the row displaying the title 'X'", not "under the 'X' label".
4. No intent or interpretation ("used to add funds", "indicating ...").
5. Never rely on ordinal positions the model cannot see ("second row").

Keep exactly the same keys.

Return ONLY the flat JSON object, no markdown formatting or explanation.'''


# ============================================================
# STAGE 5 - ACCURACY SCORING
# ============================================================

ACCURACY_VALIDATION_PROMPT = '''You are an expert UI bounding box verifier.

You are given a UI screenshot and a JSON array of detected boxes. Each item has
an id, label, description and pixel coordinates (x_min, y_min, x_max, y_max,
origin top-left).

For every item return:
- "id": the id you were given
- "label": the label you were given
- "accuracy": integer 0-100, how well the box tightly covers the described element
- "hidden": true only if the box is wrong and no correction is possible
- "suggested_coordinates": ONLY when accuracy is below 50 and a correction is
  possible, a corrected box in the same pixel schema
- "explanation": one short sentence on the score and any correction

Return ONLY the JSON array, no markdown formatting or explanation.'''


def with_component_list(component_names):
    """Stage-2 prompt with the discovered component names appended"""
    names = '\n'.join(component_names)
    return f"{ELEMENT_EXTRACTION_PROMPT}\n\n<component_list>\n{names}\n</component_list>"


def with_element_list(element_json):
    """Stage-3 prompt with the stage-2 element map appended"""
    return f"{ANCHOR_ELEMENTS_PROMPT}\n\n<element_list>\n{element_json}\n</element_list>"


def with_detections(detections_json):
    """Stage-5 prompt with the detected boxes appended"""
    return f"{ACCURACY_VALIDATION_PROMPT}\n\n<detections>\n{detections_json}\n</detections>"
