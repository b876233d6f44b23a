"""The ``wt`` command line."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from . import __version__, commands
from .commands import AppContext
from .config import get_settings
from .errors import TrunklineError
from .output import Console
from .pipeline import STAGE_MODES, MergePolicy
from .process import CommandRunnerError


def configure_logging(level: str) -> None:
    """Configure root logging for the CLI."""

    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


async def cmd_switch(args: argparse.Namespace, ctx: AppContext) -> None:
    outcome = await commands.switch(
        ctx,
        args.branch,
        create=args.create,
        base=args.base,
        execute=args.execute,
        force=args.force,
        verify=not args.no_verify,
    )
    ctx.console.result(str(outcome.path))


async def cmd_remove(args: argparse.Namespace, ctx: AppContext) -> None:
    await commands.remove(
        ctx,
        args.worktrees,
        delete_branch=not args.no_delete_branch,
        force_delete=args.force_delete,
        background=not args.no_background,
    )


def _policy(args: argparse.Namespace) -> MergePolicy:
    return MergePolicy(
        squash=not args.no_squash,
        commit=not args.no_commit,
        rebase=not args.no_rebase,
        remove=not args.no_remove,
        verify=not args.no_verify,
        force=args.force,
        stage_mode=args.stage,
        background=not args.no_background,
    )


async def cmd_merge(args: argparse.Namespace, ctx: AppContext) -> None:
    session = await commands.merge(ctx, _policy(args), target=args.target)
    if session.removed:
        ctx.console.result(str(ctx.main_path))


async def cmd_step(args: argparse.Namespace, ctx: AppContext) -> None:
    await commands.step(
        ctx,
        args.step,
        target=args.target,
        force=args.force,
        stage_mode=args.stage,
        verify=not args.no_verify,
    )


async def cmd_list(args: argparse.Namespace, ctx: AppContext) -> None:
    statuses = await commands.list_worktrees(ctx)
    if args.format == "json":
        ctx.console.result(json.dumps([status.to_dict() for status in statuses], indent=2))
    else:
        ctx.console.render(commands.format_table(statuses))


async def cmd_approvals_list(args: argparse.Namespace, ctx: AppContext) -> None:
    records = commands.list_approvals(ctx, all_projects=args.all)
    if args.json:
        ctx.console.result(json.dumps([record.model_dump(mode="json") for record in records], indent=2))
        return
    for record in records:
        ctx.console.result(f"{record.fingerprint[:12]}  {record.decision.value:<8}  {record.command}")


async def cmd_approvals_revoke(args: argparse.Namespace, ctx: AppContext) -> None:
    record = commands.revoke_approval(ctx, args.fingerprint)
    ctx.console.success(f"Revoked {record.decision.value} decision for: {record.command}")


async def cmd_approvals_clear(args: argparse.Namespace, ctx: AppContext) -> None:
    removed = commands.clear_approvals(ctx, all_projects=args.all)
    ctx.console.success(f"Cleared {removed} approval decision{'s' if removed != 1 else ''}")


async def cmd_logs(args: argparse.Namespace, ctx: AppContext) -> None:
    for path, status in commands.list_logs(ctx):
        ctx.console.result(f"{status.value:<10}  {path}")


def _add_verify_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-f", "--force", action="store_true", help="Run hooks without asking for approval")
    parser.add_argument("--no-verify", action="store_true", help="Skip project hooks")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wt", description="Manage git worktrees and merge them back")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd")

    p_switch = sub.add_parser("switch", help="Switch to a worktree, creating it if needed")
    p_switch.add_argument("branch", help="Branch name, or @ (current), - (previous), ^ (default)")
    p_switch.add_argument("-c", "--create", action="store_true", help="Create a new branch")
    p_switch.add_argument("-b", "--base", help="Base for the new branch (default: default branch)")
    p_switch.add_argument("-x", "--execute", help="Command to run in the worktree afterwards")
    _add_verify_flags(p_switch)
    p_switch.set_defaults(func=cmd_switch)

    p_remove = sub.add_parser("remove", help="Remove worktrees and their integrated branches")
    p_remove.add_argument("worktrees", nargs="*", help="Branches or tokens (default: @)")
    p_remove.add_argument("--no-delete-branch", action="store_true", help="Keep the branch")
    p_remove.add_argument(
        "-D", "--force-delete", action="store_true", help="Delete the branch even if it is not integrated"
    )
    p_remove.add_argument("--no-background", action="store_true", help="Remove in the foreground")
    p_remove.set_defaults(func=cmd_remove)

    p_merge = sub.add_parser("merge", help="Merge the current branch into the target")
    p_merge.add_argument("target", nargs="?", help="Target branch (default: default branch)")
    p_merge.add_argument("--no-squash", action="store_true", help="Keep individual commits")
    p_merge.add_argument("--no-commit", action="store_true", help="Skip staging, committing and squashing")
    p_merge.add_argument("--no-rebase", action="store_true", help="Skip rebasing onto the target")
    p_merge.add_argument("--no-remove", action="store_true", help="Keep the worktree after merging")
    p_merge.add_argument("--no-background", action="store_true", help="Remove the worktree in the foreground")
    p_merge.add_argument("--stage", choices=STAGE_MODES, default="all", help="What to stage before committing")
    _add_verify_flags(p_merge)
    p_merge.set_defaults(func=cmd_merge)

    p_step = sub.add_parser("step", help="Run a single merge stage or hook type")
    p_step.add_argument("step", choices=commands.STEPS)
    p_step.add_argument("target", nargs="?", help="Target branch (default: default branch)")
    p_step.add_argument("--stage", choices=STAGE_MODES, default="all", help="What to stage before committing")
    _add_verify_flags(p_step)
    p_step.set_defaults(func=cmd_step)

    p_list = sub.add_parser("list", help="List worktrees")
    p_list.add_argument("--format", choices=("table", "json"), default="table")
    p_list.set_defaults(func=cmd_list)

    p_approvals = sub.add_parser("approvals", help="Manage stored hook approvals")
    approvals_sub = p_approvals.add_subparsers(dest="approvals_cmd")
    p_alist = approvals_sub.add_parser("list", help="List stored decisions")
    p_alist.add_argument("--all", action="store_true", help="Include other projects")
    p_alist.add_argument("--json", action="store_true", help="Output JSON")
    p_alist.set_defaults(func=cmd_approvals_list)
    p_revoke = approvals_sub.add_parser("revoke", help="Forget one decision")
    p_revoke.add_argument("fingerprint", help="Fingerprint or unique prefix")
    p_revoke.set_defaults(func=cmd_approvals_revoke)
    p_clear = approvals_sub.add_parser("clear", help="Forget all decisions for this project")
    p_clear.add_argument("--all", action="store_true", help="Include other projects")
    p_clear.set_defaults(func=cmd_approvals_clear)

    p_logs = sub.add_parser("logs", help="List background operation logs")
    p_logs.set_defaults(func=cmd_logs)

    return parser


async def _dispatch(args: argparse.Namespace, console: Console) -> None:
    ctx = await AppContext.create(Path.cwd(), console=console)
    await args.func(args, ctx)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    console = Console()
    try:
        settings = get_settings()
    except ValidationError as exc:
        console.error(f"Invalid configuration: {exc}")
        return 1
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        asyncio.run(_dispatch(args, console))
    except TrunklineError as exc:
        console.error(exc.message, exc.hint)
        return exc.exit_code
    except CommandRunnerError as exc:
        console.error(str(exc))
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
