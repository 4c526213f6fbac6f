"""Human-readable project names."""

import json
import tomllib
from pathlib import Path
from urllib.parse import unquote

# Generic parent directories that say nothing about the project
SKIP_PARTS = ("repos", "projects", "src", "code", "Users", "home")


def _manifest_name(project_path: Path) -> str | None:
    """Read a declared name from package.json or pyproject.toml."""
    try:
        data = json.loads((project_path / "package.json").read_text(encoding="utf-8"))
        name = data.get("name") if isinstance(data, dict) else None
        if isinstance(name, str) and name:
            return name
    except (OSError, ValueError):
        pass

    try:
        with open(project_path / "pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        name = data.get("project", {}).get("name")
        if isinstance(name, str) and name:
            return name
    except (OSError, tomllib.TOMLDecodeError, AttributeError):
        pass

    return None


def get_project_display_name(actual_path: str | None) -> str | None:
    """Display name for a resolved project path.

    Manifest name first, then the last two path segments ("org/repo").
    """
    if not actual_path:
        return None

    name = _manifest_name(Path(actual_path))
    if name:
        return name

    parts = [p for p in actual_path.split("/") if p]
    if len(parts) >= 2:
        return "/".join(parts[-2:])
    return parts[-1] if parts else actual_path


def decode_project_name(encoded_name: str) -> str:
    """Display name for an encoded project directory name that never resolved.

    -Users-me-repos-org-app -> org/app
    """
    decoded = unquote(encoded_name.replace("-", "/"))
    parts = [p for p in decoded.split("/") if p]
    meaningful = [p for p in parts if p not in SKIP_PARTS]

    if len(meaningful) >= 2:
        return "/".join(meaningful[-2:])
    return parts[-1] if parts else encoded_name
