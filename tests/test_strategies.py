"""
Tests for build-root guessing and strategy candidate construction.
"""

import json

from athenaflow.core.deploy.strategies import (
    build_render_strategies,
    build_vercel_strategies,
    default_start_command,
    detect_framework,
    normalize_root_directory,
    root_directory_candidates,
    sanitize_project_name,
    select_deployment_platform,
)


def test_root_candidates_prefer_well_known_folders_and_skip_excluded():
    paths = [
        "package.json",
        "README.md",
        "services/api/requirements.txt",
        "web/package.json",
        "node_modules/left-pad/package.json",
        "apps/web/package.json",
        "dist/package.json",
        "tools/Dockerfile",
    ]

    assert root_directory_candidates(paths) == ["", "web", "apps/web", "tools"]


def test_root_candidates_without_listing_is_repo_root():
    assert root_directory_candidates([]) == [""]


def test_normalize_root_directory():
    assert normalize_root_directory("./web/") == "web"
    assert normalize_root_directory(".") == ""
    assert normalize_root_directory("/") == ""
    assert normalize_root_directory(None) == ""


def test_sanitize_project_name():
    assert sanitize_project_name("My_Cool.App!!") == "my-cool-app"
    assert sanitize_project_name("___") == "app"
    assert len(sanitize_project_name("a" * 150)) == 100


def test_vercel_strategies_per_root_with_sanitized_variant():
    candidates = build_vercel_strategies("octo/My_Site", "My_Site", "main", ["", "web"])

    assert [c.label for c in candidates] == [
        "root=., project=My_Site",
        "root=., project=my-site",
        "root=web, project=My_Site",
        "root=web, project=my-site",
    ]
    assert candidates[0].body == {
        "projectName": "My_Site",
        "repository": "octo/My_Site",
        "branch": "main",
        "rootDirectory": None,
    }
    assert candidates[2].body["rootDirectory"] == "web"


def test_vercel_strategies_skip_identical_sanitized_name():
    candidates = build_vercel_strategies("octo/site", "site", "main", [""])

    assert [c.label for c in candidates] == ["root=., project=site"]


def test_detect_framework_and_start_command():
    next_pkg = json.dumps({"dependencies": {"next": "14.0.0", "react": "18"}})
    vite_pkg = json.dumps({"dependencies": {"react": "18"}, "devDependencies": {"vite": "5"}})

    assert detect_framework(next_pkg) == "nextjs"
    assert detect_framework(vite_pkg) == "vite"
    assert detect_framework("{not json") is None
    assert detect_framework(None) is None
    assert default_start_command("nextjs") == "npm run start -- -p $PORT"
    assert default_start_command(None) == "npm run start"


def test_render_strategies_try_both_build_commands_per_root():
    candidates = build_render_strategies("octo/site", "site", "main", ["", "web"], {"web": "nextjs"})

    assert [c.body["buildCommand"] for c in candidates] == [
        "npm ci && npm run build",
        "npm install && npm run build",
        "npm ci && npm run build",
        "npm install && npm run build",
    ]
    assert candidates[0].body["startCommand"] == "npm run start"
    assert candidates[2].body["startCommand"] == "npm run start -- -p $PORT"
    assert candidates[2].body["rootDirectory"] == "web"


def test_select_deployment_platform_prefers_vercel():
    assert select_deployment_platform({"vercel": True, "render": True}) == "vercel"
    assert select_deployment_platform({"vercel": False, "render": True}) == "render"
    assert select_deployment_platform({}) is None
