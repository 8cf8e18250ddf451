import re
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

_KEEP = "Keep the person's pose, framing and recognizable facial features."


class StyleSelection(Enum):
    ANIME = (1, "Anime", f"Redraw this photo as a Japanese anime illustration with clean line art, cel shading and expressive eyes. {_KEEP}")
    CHIBI_CARTOON = (2, "Chibi Cartoon", f"Redraw this photo as a cute chibi cartoon with a big head, small body and soft pastel colors. {_KEEP}")
    STUDIO_GHIBLI = (3, "Studio Ghibli", f"Redraw this photo in the hand-painted Studio Ghibli style with warm natural light and watercolor backgrounds. {_KEEP}")
    WESTERN_CARTOON = (4, "Western Cartoon", f"Redraw this photo as a Western cartoon with bold outlines, flat colors and exaggerated expressions. {_KEEP}")
    CHINESE_ANIME = (5, "Chinese Anime", f"Redraw this photo as a Chinese anime (donghua) illustration with elegant detailed rendering and soft glow. {_KEEP}")
    DISNEY = (6, "Disney", f"Redraw this photo as a Disney-style 3D animated character with large eyes and cinematic lighting. {_KEEP}")

    def __init__(self, index: int, label: str, instruction: str):
        self.index = index
        self.label = label
        self.instruction = instruction

    @classmethod
    def from_index(cls, index: int) -> Optional["StyleSelection"]:
        for style in cls:
            if style.index == index:
                return style
        return None


# style -> (exact replies, partial keywords, keywords that veto the partial match)
_MATCH_RULES: Dict[StyleSelection, Tuple[FrozenSet[str], Tuple[str, ...], FrozenSet[str]]] = {
    StyleSelection.ANIME: (
        frozenset({"anime"}),
        ("anime",),
        frozenset({"chinese", "donghua", "chibi", "cartoon", "ghibli", "disney", "western"}),
    ),
    StyleSelection.CHIBI_CARTOON: (
        frozenset({"chibi", "chibi cartoon"}),
        ("chibi",),
        frozenset({"western", "disney"}),
    ),
    StyleSelection.STUDIO_GHIBLI: (
        frozenset({"ghibli", "studio ghibli"}),
        ("ghibli",),
        frozenset(),
    ),
    StyleSelection.WESTERN_CARTOON: (
        frozenset({"western", "western cartoon", "cartoon"}),
        ("western",),
        frozenset({"chibi"}),
    ),
    StyleSelection.CHINESE_ANIME: (
        frozenset({"chinese anime", "chinese", "donghua"}),
        ("chinese", "donghua"),
        frozenset(),
    ),
    StyleSelection.DISNEY: (
        frozenset({"disney", "disney style", "pixar"}),
        ("disney", "pixar"),
        frozenset(),
    ),
}

# "3", "3.", "3)", "#3", "3️⃣"
_INDEX_RE = re.compile(r"^#?\s*([1-9])\s*(?:[.):\-]|\ufe0f?\u20e3)?$")


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def classify_style(text: str) -> Optional[StyleSelection]:
    """
    Match a reply against the style menu. First rule that matches wins:
    numeric index, exact keyword, then keyword-with-exclusions.
    """
    t = _normalize(text)
    if not t:
        return None

    m = _INDEX_RE.match(t)
    if m:
        style = StyleSelection.from_index(int(m.group(1)))
        if style:
            return style

    for style, (exact, _, _) in _MATCH_RULES.items():
        if t in exact:
            return style

    for style, (_, keywords, excludes) in _MATCH_RULES.items():
        if any(k in t for k in keywords) and not any(x in t for x in excludes):
            return style

    return None


def resolve_style_instruction(text: str) -> Tuple[Optional[StyleSelection], str]:
    """Unmatched replies are used as a free-form style instruction."""
    style = classify_style(text)
    if style:
        return style, style.instruction
    return None, (text or "").strip()


def style_menu_text() -> str:
    lines = ["🎨 Got your photo! Which style should I turn it into?", ""]
    lines += [f"{s.index}. {s.label}" for s in StyleSelection]
    lines += ["", "Reply with a number, or describe any other style you like."]
    return "\n".join(lines)
