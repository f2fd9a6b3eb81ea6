import re
from importlib.metadata import PackageNotFoundError, version


_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+$")


def _normalize_version(raw: str | None) -> str:
    if not raw:
        return "1.0.0"
    normalized = raw.strip()
    if not _SEMVER_RE.match(normalized):
        return "1.0.0"
    return normalized


def app_version_label() -> str:
    try:
        raw = version("templatedb")
    except PackageNotFoundError:
        raw = None
    return f"V{_normalize_version(raw)}"
