"""Canonical paths for persistency-layer drafts."""

import re
from typing import Iterable, Optional

from app.config import PersistencyConfig
from app.utils.exceptions import ExtensionRequiredError, InvalidPathError, PathOutOfScopeError


def _legacy_prefix_pattern(prefixes: Iterable[str]) -> Optional[re.Pattern]:
    names = [re.escape(p.strip("/")) for p in prefixes if p and p.strip("/")]
    if not names:
        return None
    return re.compile(rf"^(?:(?:{'|'.join(names)})/)+", re.IGNORECASE)


def normalize_ai_file_path(
    path,
    root_dir: Optional[str] = None,
    extensions: Optional[Iterable[str]] = None,
    legacy_prefixes: Optional[Iterable[str]] = None,
) -> str:
    """
    Validate a draft path and return its canonical form.

    Leading slashes and legacy prefix segments (``files/``) are stripped; the
    rest of the path is returned as given.

    Raises:
        InvalidPathError: not a string, or blank
        PathOutOfScopeError: outside ``ai/``, or containing ``..``
        ExtensionRequiredError: not ending in ``.mdc``
    """
    root_dir = (root_dir or PersistencyConfig.ROOT_DIR).strip("/")
    extensions = [e.lower() for e in (extensions or PersistencyConfig.EXTENSIONS)]
    legacy_prefixes = PersistencyConfig.LEGACY_PREFIXES if legacy_prefixes is None else legacy_prefixes

    if not isinstance(path, str) or not path.strip():
        raise InvalidPathError(path=path if isinstance(path, str) else None)

    normalized = path.strip().lstrip("/")
    legacy = _legacy_prefix_pattern(legacy_prefixes)
    if legacy is not None:
        normalized = legacy.sub("", normalized)

    if not normalized.lower().startswith(f"{root_dir.lower()}/"):
        raise PathOutOfScopeError(
            message=f"Draft paths must live under the `{root_dir}/` directory.",
            path=path,
        )

    if ".." in normalized:
        raise PathOutOfScopeError(
            message=f"Draft paths must stay inside the `{root_dir}/` directory.",
            path=path,
        )

    if not any(normalized.lower().endswith(ext) for ext in extensions):
        raise ExtensionRequiredError(
            message=f"Draft paths must use the `{'`, `'.join(extensions)}` extension.",
            path=path,
        )

    return normalized
