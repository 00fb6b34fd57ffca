"""Command-line entry points: setup, run and destroy."""
import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from alpine_rootfs.bridge import enter
from alpine_rootfs.config import Settings
from alpine_rootfs.environment import attach_environment, create_environment, destroy_environment
from alpine_rootfs.errors import RootfsError, log_error
from alpine_rootfs.logging import configure_logging, get_logger
from alpine_rootfs.types import StepContext

logger = get_logger("cli")


def report_error(error: RootfsError) -> None:
    """Print the first fatal error, naming the step and the offending path."""
    phase = error.phase or "Error"
    cause = next(
        (f" ({key}: {error.details[key]})" for key in ("path", "url", "root") if key in error.details),
        "",
    )
    if os.environ.get("GITHUB_ACTIONS") == "true":
        print(f"::error title=alpine-rootfs: {phase}::{error}{cause}", file=sys.stderr)
    else:
        print(f"error: [{phase}] {error}{cause}", file=sys.stderr)


def write_action_outputs(root: Path, bin_dir: Path) -> None:
    if output := os.environ.get("GITHUB_OUTPUT"):
        with open(output, "a") as f:
            f.write(f"root-path={root}\n")
    if path := os.environ.get("GITHUB_PATH"):
        with open(path, "a") as f:
            f.write(f"{bin_dir}\n")


async def cmd_setup(args: argparse.Namespace) -> int:
    env = await create_environment(Settings.from_env())
    write_action_outputs(env.root, env.bin_dir)
    print(f"root-path={env.root}")
    print(f"bin-path={env.bin_dir}")
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    env = attach_environment(args.rootfs, user=args.user)
    environ = dict(os.environ)
    # sudo may reset PATH; the launcher stashes the caller's.
    if caller_path := environ.pop("ALPINE_ROOTFS_CALLER_PATH", None):
        environ["PATH"] = caller_path

    returncode, _, _ = await enter(
        StepContext.root("run"),
        env,
        args.command,
        args.args,
        user=args.user,
        root=args.root,
        environ=environ,
    )
    return returncode


async def cmd_destroy(args: argparse.Namespace) -> int:
    env = attach_environment(args.rootfs)
    await destroy_environment(env, robust=args.robust)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alpine-rootfs",
        description="Set up, enter and destroy Alpine Linux chroots",
    )
    subparsers = parser.add_subparsers(dest="cmd", required=True)

    setup = subparsers.add_parser("setup", help="provision a rootfs from INPUT_* variables")
    setup.set_defaults(func=cmd_setup)

    run = subparsers.add_parser("run", help="run a command inside a rootfs")
    run.add_argument("--rootfs", type=Path, required=True, help="rootfs directory")
    run.add_argument("-r", "--root", action="store_true", help="run as root")
    run.add_argument("--user", help="guest user to run as")
    run.add_argument("command", help="script (or sh option) to run under sh -eo pipefail")
    run.add_argument("args", nargs=argparse.REMAINDER)
    run.set_defaults(func=cmd_run)

    destroy = subparsers.add_parser("destroy", help="unmount and remove a rootfs")
    destroy.add_argument("--rootfs", type=Path, required=True, help="rootfs directory")
    destroy.add_argument(
        "--robust",
        action="store_true",
        help="evict processes first and keep the tree if anything stays mounted",
    )
    destroy.set_defaults(func=cmd_destroy)

    return parser


async def _main(args: argparse.Namespace) -> int:
    try:
        return await args.func(args)
    except RootfsError as e:
        log_error(e, {"command": args.cmd})
        report_error(e)
        return 1


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(os.environ.get("ALPINE_ROOTFS_LOG_LEVEL", "INFO"))
    sys.exit(asyncio.run(_main(args)))
