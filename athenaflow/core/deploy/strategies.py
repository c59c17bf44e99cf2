"""
Strategy candidate builders.

Guesses plausible build roots from a repository's file listing and
expands them into ordered, provider-specific deployment candidates,
most-likely-to-succeed first.
"""

import json
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from athenaflow.core.deploy.base import DeployStrategyCandidate

logger = logging.getLogger(__name__)

ROOT_MARKERS = ("package.json", "requirements.txt", "pyproject.toml", "Dockerfile")
PREFERRED_ROOTS = ("frontend", "web", "app", "client", "apps/web")
EXCLUDED_DIRS = {"node_modules", ".git", "dist", "build"}
MAX_ROOT_CANDIDATES = 4

RENDER_BUILD_COMMANDS = ("npm ci && npm run build", "npm install && npm run build")

# Checked in order; first dependency match wins.
FRAMEWORK_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("nextjs", ("next",)),
    ("create-react-app", ("react", "react-scripts")),
    ("vite", ("react", "vite")),
    ("vue", ("vue", "@vue/cli-service")),
    ("nuxt", ("nuxt",)),
    ("gatsby", ("gatsby",)),
    ("svelte", ("svelte",)),
    ("sveltekit", ("@sveltejs/kit",)),
    ("angular", ("@angular/core",)),
    ("astro", ("astro",)),
    ("remix", ("remix",)),
    ("node", ("express",)),
)

PLATFORM_PRIORITY = ("vercel", "render")


def normalize_root_directory(value: Optional[str]) -> str:
    """'./web/' -> 'web'; '.', '/' and '' -> ''."""
    if not value or not value.strip():
        return ""
    normalized = re.sub(r"^\./+", "", value.strip())
    normalized = normalized.strip("/")
    return "" if normalized in (".", "/") else normalized


def root_directory_candidates(paths: Iterable[str], limit: int = MAX_ROOT_CANDIDATES) -> List[str]:
    """
    Ordered build-root guesses. The repo root ("") always comes first,
    then well-known app folders, then any other folder holding a marker
    file, shallowest first.
    """
    found = set()
    for path in paths:
        parts = path.split("/")
        if parts[-1] not in ROOT_MARKERS or len(parts) < 2:
            continue
        directories = parts[:-1]
        if any(part in EXCLUDED_DIRS for part in directories):
            continue
        found.add("/".join(directories))

    preferred = [root for root in PREFERRED_ROOTS if root in found]
    others = sorted(found - set(preferred), key=lambda r: (r.count("/"), r))

    candidates = [""] + preferred + others
    return candidates[:limit]


def sanitize_project_name(name: str) -> str:
    """Vercel project names: lowercase [a-z0-9-], at most 100 chars."""
    cleaned = re.sub(r"[^a-z0-9-]+", "-", name.lower())
    cleaned = re.sub(r"-{2,}", "-", cleaned).strip("-")
    return cleaned[:100].rstrip("-") or "app"


def _root_label(root: str) -> str:
    return root or "."


def build_vercel_strategies(
    repository: str,
    project_name: str,
    branch: str,
    roots: Iterable[str],
) -> List[DeployStrategyCandidate]:
    candidates: List[DeployStrategyCandidate] = []
    for root in roots:
        names: List[str] = []
        for name in (project_name, sanitize_project_name(project_name)):
            if name and name not in names:
                names.append(name)
        for name in names:
            candidates.append(DeployStrategyCandidate(
                label=f"root={_root_label(root)}, project={name}",
                body={
                    "projectName": name,
                    "repository": repository,
                    "branch": branch,
                    "rootDirectory": root or None,
                },
            ))
    return candidates


def detect_framework(package_json: Optional[str]) -> Optional[str]:
    """Framework id from a package.json body, or None."""
    if not package_json:
        return None
    try:
        pkg = json.loads(package_json)
    except ValueError:
        logger.debug("Unreadable package.json; skipping framework detection")
        return None
    if not isinstance(pkg, dict):
        return None
    deps: Dict[str, str] = {}
    deps.update(pkg.get("dependencies") or {})
    deps.update(pkg.get("devDependencies") or {})
    for framework, required in FRAMEWORK_MARKERS:
        if all(dep in deps for dep in required):
            return framework
    return None


def default_start_command(framework: Optional[str]) -> str:
    if (framework or "").lower() in ("nextjs", "next"):
        return "npm run start -- -p $PORT"
    return "npm run start"


def build_render_strategies(
    repository: str,
    service_name: str,
    branch: str,
    roots: Iterable[str],
    frameworks: Optional[Mapping[str, Optional[str]]] = None,
) -> List[DeployStrategyCandidate]:
    frameworks = frameworks or {}
    candidates: List[DeployStrategyCandidate] = []
    for root in roots:
        framework = frameworks.get(root)
        for build_command in RENDER_BUILD_COMMANDS:
            candidates.append(DeployStrategyCandidate(
                label=f"root={_root_label(root)}, build={build_command}",
                body={
                    "serviceName": service_name,
                    "repository": repository,
                    "branch": branch,
                    "rootDirectory": root or None,
                    "buildCommand": build_command,
                    "startCommand": default_start_command(framework),
                    "framework": framework,
                },
            ))
    return candidates


def select_deployment_platform(configured: Mapping[str, bool]) -> Optional[str]:
    """First configured platform by priority (Vercel before Render)."""
    for platform in PLATFORM_PRIORITY:
        if configured.get(platform):
            return platform
    return None
