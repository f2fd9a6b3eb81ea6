import re


TAG_SYNONYMS = {
    "py": "python",
    "rbx": "roblox",
    "lua": "luau",
    "js": "javascript",
    "ts": "typescript",
}


def slugify(value: str) -> str:
    s = (value or "").lower().strip()
    s = re.sub(r"[^a-z0-9\s-]", "", s)
    s = re.sub(r"\s+", "-", s)
    return re.sub(r"-+", "-", s)


def compact_text(*parts: str) -> str:
    return re.sub(r"\s+", " ", " ".join(parts)).strip()


def normalize_tag(tag: str) -> str:
    base = tag.lower()
    return TAG_SYNONYMS.get(base, base)


def parse_tags(raw: str) -> list[str]:
    """Split free-form tag input ("#py, flask  api") into normalized tags."""
    out = []
    for tag in re.split(r"[\s,]+", raw or ""):
        tag = tag.strip().lstrip("#").strip()
        if tag:
            out.append(normalize_tag(tag))
    return out


def to_iso(value):
    return value.isoformat() if hasattr(value, "isoformat") else value
