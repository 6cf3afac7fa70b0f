"""Visibility and contradiction filtering for target outfit text.

The analysis model is asked to do this itself; these helpers re-apply the same
rules to its output so garments for hidden body zones never reach the edit model.
"""

import re

VISIBLE_ZONE_NAMES = ("HEAD", "NECK", "SHOULDERS", "CHEST", "ARMS", "WAIST", "HIPS", "LEGS", "FEET")

# Garment keywords grouped by the zones that must be visible for them to stay.
# A group is satisfied when ANY of its zones is visible.
GARMENT_ZONES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "footwear": (
        ("FEET",),
        ('shoe', 'sneaker', 'boot', 'sandal', 'heels', 'high heels', 'sock', 'loafer',
         'slipper', 'flip-flop', 'footwear', 'pump', 'stiletto', 'clog', 'geta'),
    ),
    "legwear": (
        ("LEGS",),
        ('pants', 'trousers', 'jeans', 'shorts', 'skirt', 'miniskirt', 'leggings', 'tights',
         'stockings', 'culottes', 'joggers', 'slacks', 'chinos', 'sweatpants', 'hakama'),
    ),
    "upper": (
        ("SHOULDERS", "CHEST", "ARMS", "WAIST"),
        ('shirt', 't-shirt', 'tee', 'blouse', 'top', 'tank top', 'camisole', 'hoodie',
         'sweater', 'jumper', 'cardigan', 'jacket', 'blazer', 'coat', 'trench coat',
         'lab coat', 'vest', 'dress', 'sundress', 'gown', 'suit', 'tuxedo', 'uniform',
         'robe', 'tunic', 'armor', 'armour', 'kimono', 'apron', 'bodysuit', 'sports bra',
         'bra', 'corset', 'cape', 'jersey', 'techwear', 'gear'),
    ),
    "headwear": (
        ("HEAD",),
        ('hat', 'top hat', 'straw hat', 'cap', 'beanie', 'crown', 'tiara', 'headband',
         'headdress', 'helmet', 'hood', 'goggles', 'mask', 'glasses', 'sunglasses'),
    ),
    "neckwear": (
        ("NECK",),
        ('scarf', 'necklace', 'choker', 'bow tie', 'necktie', 'collar', 'stethoscope'),
    ),
}

# Parts of an outfit request that would change the scene instead of the clothes.
# Only explicit requests count, so "jacket that blends into the background" stays.
CONTRADICTION_PATTERNS = [
    r'\b(?:change|replace|swap|switch|make|turn|move)\b[^,;]*?'
    r'\b(?:background|backdrop|scenery|setting|scene|pose|posture|camera angle|location)\b',
    r'\b(?:new|different|another)\s+(?:background|backdrop|scenery|setting|scene|pose|camera angle)\b',
    r'^\s*(?:in|on|at|against)\s+(?:a|an|the)\b.*\b(?:background|backdrop|scenery|setting)\b',
    r'\b(?:strike|striking|hold|holding)\s+(?:a|the)\s+[\w\s-]{0,20}?\bpose\b',
    r'\b(?:sitting|standing|kneeling|lying)\s+(?:down|position|pose)\b',
]

_SEPARATOR = re.compile(r'\s*(?:,|;|\n|\+|&|\band\b)\s*', flags=re.IGNORECASE)
_CONNECTOR = re.compile(r'\s+(?:paired with|tucked into|with|over|under|plus)\s+', flags=re.IGNORECASE)
_OPENERS = "([{"
_CLOSERS = ")]}"

_ZONE_PATTERN = re.compile(r'\b(' + "|".join(VISIBLE_ZONE_NAMES) + r')\b', flags=re.IGNORECASE)
_ZONES_HEADER = re.compile(r'VISIBLE_ZONES\b\**\s*:?(.*)$')
_KEY_LINE = re.compile(r'^\s*(?:\d+\.\s*)?\**([A-Za-z][A-Za-z_]*)\**\s*:')
_NEGATION = re.compile(
    r'\b(?:false|no|none|not\s+visible|not\s+shown|hidden|invisible|cropped|out\s+of\s+frame)\b',
    flags=re.IGNORECASE,
)


def _build_garment_pattern() -> re.Pattern:
    keywords: dict[str, str] = {}
    for group, (_, words) in GARMENT_ZONES.items():
        for word in words:
            keywords.setdefault(word, group)
    # Longest first so "t-shirt" wins over "shirt" and "top hat" over "top"
    alternation = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf'\b({alternation})(?:e?s)?\b', flags=re.IGNORECASE)


_GARMENT_PATTERN = _build_garment_pattern()
_KEYWORD_GROUP = {word: group for group, (_, words) in GARMENT_ZONES.items() for word in words}


def garment_groups(fragment: str) -> set[str]:
    """Return the garment groups a fragment of outfit text mentions."""
    return {_KEYWORD_GROUP[m.group(1).lower()] for m in _GARMENT_PATTERN.finditer(fragment)}


def is_contradiction(fragment: str) -> bool:
    """True when a fragment asks to change background, pose or camera."""
    return any(re.search(p, fragment, flags=re.IGNORECASE) for p in CONTRADICTION_PATTERNS)


def split_fragments(text: str, separator: re.Pattern = _SEPARATOR) -> list[tuple[str, str]]:
    """Split outfit text into ``(leading_separator, fragment)`` pairs.

    Separators inside parentheses are ignored, so "bodysuit (heart cutout, lace)"
    stays a single fragment.
    """
    pieces: list[tuple[str, str]] = []
    depth = 0
    start = 0
    sep = ""
    pos = 0
    while pos < len(text):
        char = text[pos]
        if char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth = max(0, depth - 1)
        elif depth == 0:
            match = separator.match(text, pos)
            if match:
                pieces.append((sep, text[start:pos]))
                sep = match.group(0)
                start = pos = match.end()
                continue
        pos += 1
    pieces.append((sep, text[start:]))
    return [(s, f) for s, f in pieces if f.strip()]


def filter_outfit(text: str, visible_zones: list[str] | None) -> str:
    """Drop outfit fragments for hidden zones and fragments that change the scene.

    A fragment is dropped only when every garment it names sits on a hidden zone.
    Fragments mixing hidden and visible garments ("uniform with pleated skirt") are
    split again on connecting words and only the hidden pieces are removed.
    Everything else is kept verbatim, including separators between kept fragments.
    With ``visible_zones`` of None only the contradiction filter runs.
    """
    visible = {z.upper() for z in visible_zones} if visible_zones is not None else None

    kept: list[tuple[str, str]] = []
    for sep, fragment in split_fragments(text):
        if is_contradiction(fragment):
            continue
        if visible is not None:
            fragment = _drop_hidden(fragment, visible)
            if not fragment:
                continue
        kept.append((sep, fragment))

    return _join(kept)


def _hidden_groups(fragment: str, visible: set[str]) -> tuple[set[str], set[str]]:
    groups = garment_groups(fragment)
    hidden = {g for g in groups if not visible.intersection(GARMENT_ZONES[g][0])}
    return groups, hidden


def _drop_hidden(fragment: str, visible: set[str]) -> str:
    groups, hidden = _hidden_groups(fragment, visible)
    if not hidden:
        return fragment
    if hidden == groups:
        return ""

    kept: list[tuple[str, str]] = []
    keep_previous = True
    for sep, piece in split_fragments(fragment, _CONNECTOR):
        piece_groups, piece_hidden = _hidden_groups(piece, visible)
        if piece_groups:
            keep_previous = piece_hidden != piece_groups
        # Pieces naming no garment ("lace trim") follow the garment before them
        if keep_previous:
            kept.append((sep, piece))
    return _join(kept)


def _join(pieces: list[tuple[str, str]]) -> str:
    if not pieces:
        return ""
    result = pieces[0][1] + "".join(sep + piece for sep, piece in pieces[1:])
    return result.strip()


def _zone_items(line: str) -> list[str]:
    line = line.split("#", 1)[0]
    zones = []
    for item in re.split(r'[,;\[\]]', line):
        if _NEGATION.search(item):
            continue
        zones.extend(z.upper() for z in _ZONE_PATTERN.findall(item))
    return zones


def parse_visible_zones(analysis: str) -> list[str] | None:
    """Read the VISIBLE_ZONES entry of the YAML analysis.

    Accepts an inline list, a block list, or a ``ZONE: true`` mapping. Entries
    marked false or not visible and trailing ``#`` comments are ignored.
    Returns None when the analysis has no such entry.
    """
    lines = (analysis or "").splitlines()
    for index, line in enumerate(lines):
        header = _ZONES_HEADER.search(line)
        if header:
            break
    else:
        return None

    found = _zone_items(header.group(1))
    for line in lines[index + 1:]:
        key = _KEY_LINE.match(line)
        if key and key.group(1).upper() not in VISIBLE_ZONE_NAMES:
            break
        found.extend(_zone_items(line))

    zones: list[str] = []
    for zone in found:
        if zone not in zones:
            zones.append(zone)
    return zones or None
