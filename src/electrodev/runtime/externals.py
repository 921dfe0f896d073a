from __future__ import annotations

import json
import re
from pathlib import Path
from typing import List


def resolve_externals(root: Path) -> List[str]:
    """
    Resolve modules the main and preload builds must leave unbundled.

    Externalizes ``electron``, the package.json dependencies and
    optionalDependencies, and deep imports of any of those (``pkg/subpath``,
    returned as a regular expression source as the last item).
    """
    package_json = root / "package.json"
    payload = {}
    if package_json.exists():
        payload = json.loads(package_json.read_text(encoding="utf-8"))

    deps: List[str] = ["electron"]
    for section in ("dependencies", "optionalDependencies"):
        for name in payload.get(section) or {}:
            if name not in deps:
                deps.append(name)

    deep_pattern = "^(" + "|".join(re.escape(name) for name in deps) + ")/.+"
    return [*deps, deep_pattern]
