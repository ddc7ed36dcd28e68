"""
Regex families for cutlist text.

Shared by the regex line parser, the voice parser and the label cleaner. Each
table is ordered: the first pattern that matches wins.
"""
import re

_NUM = r"(\d+(?:\.\d+)?)"
_UNIT = r"\s*(?:mm|cm|in)?"

# ── Dimensions ────────────────────────────────────────────────────────────────
# Captures: (length, width)

DIMENSION_PATTERNS = [
    # 720x560, 720 X 560, 720×560, 720mm x 560mm
    re.compile(_NUM + _UNIT + r"\s*[x×X]\s*" + _NUM + _UNIT, re.I),
    # 720 by 560
    re.compile(_NUM + _UNIT + r"\s+by\s+" + _NUM + _UNIT, re.I),
    # L720 W560, L:720 W:560
    re.compile(r"\bL[:\s]*" + _NUM + _UNIT + r"\s*W[:\s]*" + _NUM + _UNIT, re.I),
    # length 720 width 560
    re.compile(r"length[:\s]*" + _NUM + _UNIT + r"\s*,?\s*width[:\s]*" + _NUM + _UNIT, re.I),
]

# ── Quantity ──────────────────────────────────────────────────────────────────
# Captures: (qty,)

QUANTITY_PATTERNS = [
    # qty 2, qty:2, qty=2, quantity 2
    re.compile(r"(?:qty|quantity)[:\s=]*(\d+)", re.I),
    # 2pcs, 2 pcs, 2 pieces, 2 off
    re.compile(r"(\d+)\s*(?:pcs?|pieces?|off)\b", re.I),
    # x2, ×2, *2 (after the dimension token has been removed)
    re.compile(r"(?:^|\s)[x×\*]\s*(\d+)\b", re.I),
    # 2x at start of line
    re.compile(r"^(\d+)\s*[x×]\s", re.I),
    # q2
    re.compile(r"\bq(\d+)\b", re.I),
    # (2), [2] at end of line
    re.compile(r"[(\[]\s*(\d+)\s*[)\]]$"),
    # times 2
    re.compile(r"times\s*(\d+)", re.I),
]

# ── Thickness ─────────────────────────────────────────────────────────────────

THICKNESS_PATTERNS = [
    # t18, T18, t:18, t=18
    re.compile(r"\bt[:\s=]*(\d+(?:\.\d+)?)\s*(?:mm)?\b", re.I),
    # thk 18, thickness 18
    re.compile(r"(?:thk|thickness)[:\s=]*(\d+(?:\.\d+)?)\s*(?:mm)?", re.I),
    # standalone 12-50 mm value that is likely thickness
    re.compile(r"\b(1[2-9]|[2-4]\d|50)\s*mm\b"),
]

# ── Grain / rotation ──────────────────────────────────────────────────────────

GRAIN_PATTERNS = {
    "grain_length": [
        re.compile(r"\bGL\b"),
        re.compile(r"\bgrain(?:ed)?\s*(?:along\s*)?(?:length|L)\b", re.I),
        re.compile(r"\blength\s*grain\b", re.I),
        re.compile(r"\balong\s*(?:the\s*)?grain\b", re.I),
        re.compile(r"\bwith\s*grain\b", re.I),
        re.compile(r"\|\|"),
    ],
    "grain_width": [
        re.compile(r"\bGW\b"),
        re.compile(r"\bgrain\s*(?:along\s*)?width\b", re.I),
        re.compile(r"\bwidth\s*grain\b", re.I),
    ],
    "no_rotation": [
        re.compile(r"\bno\s*rotat(?:e|ion)\b", re.I),
        re.compile(r"\bfixed\b", re.I),
        re.compile(r"\blocked\b", re.I),
        re.compile(r"\bdon'?t\s*rotate\b", re.I),
        re.compile(r"\brotation\s*(?:off|no|false)\b", re.I),
    ],
    "allow_rotation": [
        re.compile(r"\bno\s*grain\b", re.I),
        re.compile(r"\brotat(?:e|ion)\s*(?:ok|yes|true|allowed)\b", re.I),
        re.compile(r"\bcan\s*rotate\b", re.I),
        re.compile(r"\bfree\b", re.I),
    ],
}

# ── Materials ─────────────────────────────────────────────────────────────────
# material id → keywords, most specific ids first

MATERIAL_KEYWORDS = {
    "white-melamine": ["white melamine", "white mel", "wht mel", "white board"],
    "black-melamine": ["black melamine", "black mel", "blk mel"],
    "grey-melamine": ["grey melamine", "gray melamine", "grey mel"],
    "oak": ["white oak", "red oak", "oak"],
    "walnut": ["american walnut", "walnut"],
    "maple": ["hard maple", "maple"],
    "cherry": ["american cherry", "cherry"],
    "birch": ["baltic birch", "birch"],
    "beech": ["beech"],
    "ash": ["ash"],
    "pine": ["pine"],
    "mdf": ["mdf", "medium density"],
    "hdf": ["hdf", "high density"],
    "pb": ["particle board", "particleboard", "chipboard", "pb"],
    "plywood": ["marine ply", "plywood", "ply"],
    "osb": ["osb", "oriented strand"],
    "hpl": ["high pressure laminate", "formica", "hpl"],
    "melamine": ["melamine", "mel"],
}

# ── Edge banding ──────────────────────────────────────────────────────────────

EDGEBAND_PATTERNS = {
    "specific_edges": re.compile(r"(?:EB|edge|edging)[:\s]*([LW][12](?:\s*,?\s*[LW][12])*)", re.I),
    "all_edges": re.compile(r"(?:all\s*(?:edges?|sides?)|4\s*(?:edges?|sides?))", re.I),
    "long_edges": re.compile(r"long\s*(?:edges?|sides?)", re.I),
    "short_edges": re.compile(r"short\s*(?:edges?|sides?)", re.I),
    "two_long_one_short": re.compile(r"2\s*long\s*1\s*short|\b2L1W\b", re.I),
}

# ── Label cleanup ─────────────────────────────────────────────────────────────
# Everything that is not the part's name

LABEL_CLEANUP_PATTERNS = [
    re.compile(r"\d+(?:\.\d+)?\s*(?:mm|cm|in)?\s*[x×X]\s*\d+(?:\.\d+)?\s*(?:mm|cm|in)?", re.I),
    re.compile(r"(?:qty|quantity)[:\s=]*\d+", re.I),
    re.compile(r"(?:^|\s)[x×\*]\s*\d+", re.I),
    re.compile(r"\d+\s*(?:pcs?|pieces?)", re.I),
    re.compile(r"\bq\d+\b", re.I),
    re.compile(r"\bt[:\s=]*\d+(?:\.\d+)?\s*(?:mm)?\b", re.I),
    re.compile(r"(?:thk|thickness)[:\s=]*\d+(?:\.\d+)?\s*(?:mm)?", re.I),
    re.compile(r"\b(?:GL|GW)\b", re.I),
    re.compile(r"grain\s*(?:along\s*)?(?:length|width)", re.I),
    re.compile(r"no\s*rotat(?:e|ion)", re.I),
    re.compile(r"(?:EB|edge|edging)[:\s]*[LW][12](?:\s*,?\s*[LW][12])*", re.I),
    re.compile(r"(?:all|long|short)\s*(?:edges?|sides?)", re.I),
]

# ── Spoken numbers ────────────────────────────────────────────────────────────

NUMBER_WORDS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4,
    "five": 5, "six": 6, "seven": 7, "eight": 8, "nine": 9,
    "ten": 10, "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
    "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
    "hundred": 100, "thousand": 1000,
}
