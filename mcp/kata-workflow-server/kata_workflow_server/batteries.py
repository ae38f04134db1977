"""
Copy the built-in modes.yaml and templates into a project so they can be
edited there. Existing files are left alone unless update is set.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Optional

from .config_tools import config_get_effective, resolve_config_path
from .modes import BATTERIES_DIR, BUILTIN_MODES_FILE


logger = logging.getLogger(__name__)


def _copy(src: Path, dest: Path, update: bool, result: dict[str, list[str]]) -> None:
    if dest.exists() and not update:
        result["skipped"].append(str(dest))
        return
    existed = dest.exists()
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)
    result["updated" if existed else "created"].append(str(dest))


def scaffold_batteries(project_dir: Optional[str] = None, update: bool = False) -> dict[str, Any]:
    effective = config_get_effective(project_dir)
    config = effective["config"]
    project = Path(effective["project_dir"])

    modes_file = resolve_config_path(config["modes_file"], project)
    templates_dir = resolve_config_path(config["templates_dir"], project)

    result: dict[str, list[str]] = {"created": [], "updated": [], "skipped": []}
    _copy(BUILTIN_MODES_FILE, modes_file, update, result)
    for template in sorted((BATTERIES_DIR / "templates").glob("*.md")):
        _copy(template, templates_dir / template.name, update, result)

    logger.info(
        "Batteries in %s: %d created, %d updated, %d skipped",
        project, len(result["created"]), len(result["updated"]), len(result["skipped"]),
    )
    return {"success": True, **result}
