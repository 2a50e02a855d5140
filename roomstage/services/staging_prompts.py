"""
Room types, furniture styles, and prompt builders shared by the staging providers.
"""

from __future__ import annotations

from typing import Dict

ROOM_TYPES: Dict[str, str] = {
    "living-room": "Living Room",
    "bedroom-master": "Master Bedroom",
    "bedroom-guest": "Guest Bedroom",
    "bedroom-kids": "Kids Bedroom",
    "dining-room": "Dining Room",
    "kitchen": "Kitchen",
    "home-office": "Home Office",
    "bathroom": "Bathroom",
    "outdoor-patio": "Outdoor/Patio",
}

# id -> (label, description)
FURNITURE_STYLES: Dict[str, tuple] = {
    "modern": ("Modern", "Clean lines, neutral colors, sleek furniture"),
    "traditional": ("Traditional", "Elegant, timeless pieces with rich woods"),
    "minimalist": ("Minimalist", "Simple, functional, uncluttered spaces"),
    "mid-century": ("Mid-Century", "Retro-inspired with organic curves"),
    "scandinavian": ("Scandinavian", "Light woods, white walls, cozy textiles"),
    "industrial": ("Industrial", "Raw materials, exposed elements, urban feel"),
    "coastal": ("Coastal", "Light, airy, ocean-inspired colors"),
    "farmhouse": ("Farmhouse", "Warm, inviting, natural materials"),
    "luxury": ("Luxury", "Opulent, sophisticated, high-end finishes"),
}

_BEDROOMS = ("bedroom-master", "bedroom-guest", "bedroom-kids")


def room_label(room_type: str) -> str:
    return ROOM_TYPES.get(room_type, room_type)


def style_label(style: str) -> str:
    return FURNITURE_STYLES.get(style, (style, ""))[0]


def style_description(style: str) -> str:
    return FURNITURE_STYLES.get(style, (style, ""))[1]


# ── Detailed edit prompt (instruction-following image models) ──
_BASE_ITEMS = """- An area rug placed ON TOP of the existing flooring
- Wall art or a mirror hung naturally on existing walls
- Subtle decorative accessories (minimal and restrained)
- Indoor plants (optional, realistic placement)
- Lamps that complement the existing lighting
- Curtains or blinds installed ONLY on existing windows"""


def _room_items(room_type: str, style: str) -> str:
    if room_type in _BEDROOMS:
        return (
            "- A bed appropriate for the bedroom, scaled realistically to the room\n"
            "- Matching nightstands placed beside the bed\n"
            f"- Soft bedding, pillows, and neutral textiles in {style} style\n" + _BASE_ITEMS
        )
    if room_type == "living-room":
        return (
            f"- A sofa or sectional sized appropriately for the space in {style} style\n"
            "- One or two accent chairs for additional seating\n"
            "- A coffee table and side tables as needed\n"
            "- A media console or focal point furniture if appropriate\n" + _BASE_ITEMS
        )
    if room_type == "dining-room":
        return (
            f"- A dining table sized appropriately for the room in {style} style\n"
            "- Dining chairs (typically 4-8 depending on table size)\n"
            "- A sideboard or buffet if wall space allows\n"
            "- A centerpiece or table setting\n" + _BASE_ITEMS
        )
    if room_type == "kitchen":
        return (
            "- Bar stools if there is a counter or island\n"
            "- Decorative items on counters (minimal and tasteful)\n"
            "- A bowl of fruit or simple kitchen accessories\n" + _BASE_ITEMS
        )
    if room_type == "home-office":
        return (
            f"- A desk sized appropriately for the space in {style} style\n"
            "- An office chair\n"
            "- Bookshelves or storage if wall space allows\n"
            "- Desk accessories and task lighting\n" + _BASE_ITEMS
        )
    if room_type == "bathroom":
        return (
            "- Towels, bath mat, and textiles in coordinating colors\n"
            "- Countertop accessories (soap dispenser, tray, etc.)\n"
            "- A small plant or decorative items\n"
            "- Shower curtain if needed"
        )
    if room_type == "outdoor-patio":
        return (
            f"- Outdoor seating (chairs, sofa, or dining set) in {style} style\n"
            "- Outdoor-appropriate tables\n"
            "- Potted plants and planters\n"
            "- Outdoor rugs if appropriate for the surface\n"
            "- Cushions and outdoor textiles"
        )
    return f"- Furniture appropriate for the space in {style} style\n" + _BASE_ITEMS


def build_edit_prompt(room_type: str, style: str) -> str:
    """Long-form inpainting instruction: add furniture, change nothing else."""
    room = room_label(room_type)
    label = style_label(style)
    description = style_description(style)
    items = _room_items(room_type, label)
    return f"""You are performing a LOCAL IMAGE EDIT using INPAINTING ONLY.

You are NOT generating a new image. You are editing a FIXED background photograph.
The input image is a professionally photographed, EMPTY {room}.
The camera position, lens, perspective, vanishing points, and framing are LOCKED.

TASK:
Realistically stage this EMPTY {room} by ADDING furniture and decor ONLY.

MUST NOT CHANGE:
- Camera angle, lens perspective, field of view, framing, crop, or aspect ratio
- Walls, flooring, ceiling, windows, doors, trim, or architectural features
- Existing lighting direction, brightness, color temperature, or shadows

Only modify pixels where new furniture or decor is placed.
If furniture cannot be added without altering perspective or geometry, do not add it.

STYLE:
Stage the room in a {label} style ({description}).
Favor neutral, market-friendly interpretations of this style.

ONLY ADD THE FOLLOWING:
{items}

DO NOT add people, pets, electronics, clutter, or personal items.
Keep walkways clear and do not block doors, windows, or vents.

All added objects must be photorealistic with shadows matching the existing lighting.
The final image must be identical to the input photo except for the added furniture and decor.
Stage this {room} in {label} style."""


# ── Keyword prompt (diffusion models) ──
def _furniture_keywords(room_type: str, style: str) -> str:
    if room_type in _BEDROOMS:
        return f"{style} bed with headboard, matching nightstands, soft bedding and pillows, area rug, table lamps, wall art"
    if room_type == "living-room":
        return f"{style} sofa, accent chairs, coffee table, side tables, area rug, floor lamp, wall art, decorative pillows"
    if room_type == "dining-room":
        return f"{style} dining table, dining chairs, chandelier or pendant light, area rug, sideboard, table centerpiece"
    if room_type == "kitchen":
        return "bar stools at counter, decorative fruit bowl, small plants, coordinated accessories"
    if room_type == "home-office":
        return f"{style} desk, ergonomic office chair, bookshelf, desk lamp, wall art, area rug"
    if room_type == "bathroom":
        return "matching towels, bath mat, decorative accessories, small plant, coordinated soap dispenser"
    if room_type == "outdoor-patio":
        return f"{style} outdoor furniture set, potted plants, outdoor rug, decorative cushions, lanterns"
    return f"{style} furniture, area rug, wall art, decorative accessories, plants"


def build_keyword_prompt(room_type: str, style: str) -> str:
    room = room_label(room_type)
    label = style_label(style)
    return (
        f"Professional real estate photo, {room} interior, {label} style furniture and decor, "
        f"{_furniture_keywords(room_type, label)}, "
        "photorealistic, high quality, professional photography, natural lighting, "
        "soft shadows, architectural photography, interior design magazine quality, "
        "MLS listing photo, staged home, market ready"
    )


NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, warped, bent lines, wrong perspective, "
    "floating objects, unrealistic shadows, cartoon, illustration, painting, "
    "CGI, 3D render, people, pets, animals, faces, text, watermark, logo, "
    "cluttered, messy, different room, different angle, zoomed, cropped differently, "
    "walls changed, floor changed, ceiling changed, windows moved, doors moved"
)

STRUCTURE_NEGATIVE_PROMPT = (
    "changing walls, changing floor, changing ceiling, changing windows, changing doors, "
    "removing windows, removing doors, altering room structure, construction, renovation, "
    "different wall color, different flooring"
)
