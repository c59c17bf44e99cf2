"""
athenaflow command-line entry point.

    athenaflow chat --model gpt-4o "Add a landing page"
    athenaflow deploy --provider vercel --repo octo/site --auto-fix
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from athenaflow.config.settings import get_config_service
from athenaflow.core.ai.attachments import RawAttachment, normalize_attachments
from athenaflow.core.ai.base import ChatMessage, ProviderType
from athenaflow.core.ai.events import ErrorEvent, TextEvent, to_json_line
from athenaflow.core.ai.factory import DEFAULT_MODEL, resolve_model
from athenaflow.core.ai.gateway import StreamingGateway
from athenaflow.core.autofix import DEFAULT_SYSTEM_PROMPT, AutoFixContext, AutoFixOrchestrator
from athenaflow.core.cancellation import CancellationToken
from athenaflow.core.change_block import extract_change_set
from athenaflow.core.deploy.strategies import select_deployment_platform
from athenaflow.core.errors import AthenaFlowError, AutoFixError
from athenaflow.core.pipeline import build_applier, build_engine
from athenaflow.services.config_service import EnvironmentCredentials

logger = logging.getLogger(__name__)


def _write(payload) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _configure_logging(level: Optional[str]) -> None:
    if not level:
        level = get_config_service().get("logging.level", "WARNING")
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

# =====================================================================
#  CHAT
# =====================================================================

async def cmd_chat(args, credentials: EnvironmentCredentials) -> int:
    try:
        attachments = normalize_attachments([RawAttachment.from_path(p) for p in args.attach or []])
    except (OSError, AthenaFlowError) as e:
        _write({"type": "error", "error": str(e)})
        return 1

    gateway = StreamingGateway(credentials)
    messages = [ChatMessage(role="user", text=args.prompt)]
    parts: List[str] = []
    failed = False

    async for event in gateway.run_chat_turn(
        args.system or DEFAULT_SYSTEM_PROMPT,
        messages,
        attachments,
        model_id=args.model,
        provider_id=args.provider,
        cancel=CancellationToken(),
    ):
        sys.stdout.write(to_json_line(event))
        sys.stdout.flush()
        if isinstance(event, TextEvent):
            parts.append(event.content)
        elif isinstance(event, ErrorEvent):
            failed = True

    if args.extract and not failed:
        change_set = extract_change_set("".join(parts))
        _write({"type": "changes", "changes": change_set.to_dict() if change_set else None})
    return 1 if failed else 0

# =====================================================================
#  DEPLOY
# =====================================================================

def _available_providers(credentials: EnvironmentCredentials) -> List[str]:
    return [p.value for p in ProviderType if credentials.is_configured(p.value)]


async def cmd_deploy(args, credentials: EnvironmentCredentials) -> int:
    provider = args.provider or select_deployment_platform({
        "vercel": credentials.is_configured("vercel"),
        "render": credentials.is_configured("render"),
    })
    if not provider:
        _write({"type": "error", "error": "No deployment platform is configured (VERCEL_TOKEN or RENDER_API_KEY)."})
        return 1

    applier = build_applier(credentials)
    engine = build_engine(credentials, applier)
    token = CancellationToken()

    branch = args.branch
    if not branch:
        result = await asyncio.to_thread(applier.client.get_default_branch, args.repo)
        branch = result["data"] if result["ok"] else "main"
    project = args.project or args.repo.split("/")[-1]

    result = await engine.run_deploy_attempt(provider, args.repo, branch, project, cancel=token)
    if result.ok:
        _write({"type": "deployed", "provider": provider, "url": result.outcome.url, "id": result.outcome.id})
        return 0

    _write({
        "type": "deploy_failed",
        "error": result.error,
        "failures": [f.to_dict() for f in result.failures],
    })
    if not args.auto_fix or result.failure is None:
        return 1

    model = args.model or get_config_service().get("model") or DEFAULT_MODEL
    resolved = resolve_model(model)
    context = AutoFixContext(
        available_providers=_available_providers(credentials),
        selected_model=model,
        selected_provider=resolved.provider.value,
        selected_label=resolved.label,
        default_branch=branch,
    )
    orchestrator = AutoFixOrchestrator(StreamingGateway(credentials), applier, engine)
    try:
        report = await orchestrator.run(result.failure, context, cancel=token)
    except AutoFixError as e:
        _write({"type": "autofix_failed", "error": str(e), "rounds": len(e.rounds)})
        return 1

    _write({
        "type": "deployed",
        "provider": provider,
        "url": report.outcome.url if report.outcome else None,
        "rounds": [{"round": r.index, "model": r.model_label, "commit": r.commit.sha} for r in report.rounds],
    })
    return 0

# =====================================================================
#  CLI ENTRY WITH SUBCOMMANDS
# =====================================================================

def _create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="athenaflow",
        description="Stream LLM chat turns, extract FILE CHANGES and deploy with auto-fix",
    )
    parser.add_argument("--log-level", help="Logging level (default: config logging.level or WARNING)")

    subparsers = parser.add_subparsers(dest="command")

    parser_chat = subparsers.add_parser("chat", help="Run one chat turn and print events as JSON lines")
    parser_chat.add_argument("prompt", help="User message")
    parser_chat.add_argument("--model", help="Model id (e.g. gpt-4o, openrouter:qwen/qwen3-coder:free)")
    parser_chat.add_argument("--provider", help="Provider id when the model is not in the table")
    parser_chat.add_argument("--attach", action="append", metavar="PATH", help="Attach a file (repeatable)")
    parser_chat.add_argument("--system", help="Override the system prompt")
    parser_chat.add_argument("--extract", action="store_true", help="Also print the extracted FILE CHANGES")

    parser_deploy = subparsers.add_parser("deploy", help="Deploy a GitHub repository")
    parser_deploy.add_argument("--provider", choices=("vercel", "render"), help="Hosting platform (default: first configured)")
    parser_deploy.add_argument("--repo", required=True, help="owner/name")
    parser_deploy.add_argument("--branch", help="Branch (default: repository default branch)")
    parser_deploy.add_argument("--project", help="Project or service name (default: repository name)")
    parser_deploy.add_argument("--auto-fix", action="store_true", help="Let a model commit fixes and redeploy on failure")
    parser_deploy.add_argument("--model", help="Preferred model for auto-fix")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _create_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    credentials = EnvironmentCredentials(get_config_service())
    try:
        if args.command == "chat":
            return asyncio.run(cmd_chat(args, credentials))
        elif args.command == "deploy":
            return asyncio.run(cmd_deploy(args, credentials))
        parser.print_help()
        return 1
    except KeyboardInterrupt:
        return 130
    except AthenaFlowError as e:
        _write({"type": "error", "error": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
