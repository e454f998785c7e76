#!/usr/bin/env python3
"""
poetloop CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the HTTP server
    evolve          cycle           Write the next poem
    poems           list            Show every poem (or one cycle)
    state           status          Show the poet state and parse stats
    reset                           Clear all poems and the poet state
    prompt          ask             One-off completion, nothing stored
    steer                           Override the next prompt of the current poem

Everything except `serve` runs against the local database directly.
"""

import argparse
import asyncio
import json
import logging

from poetloop import __version__


def _service():
    from poetloop.config import get_config
    from poetloop.service import build_service

    cfg = get_config()
    logging.basicConfig(
        level=getattr(logging, cfg.get("logging", {}).get("level", "WARNING").upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return build_service(cfg)


def _print_poem(cycle, as_json: bool = False):
    if as_json:
        print(json.dumps(cycle.to_dict(), indent=2))
        return
    score = "n/a" if cycle.bukowski_style_score is None else f"{cycle.bukowski_style_score:.2f}"
    print(f"  #{cycle.cycle_number}  {cycle.title}   (style {score})")
    print()
    for line in cycle.poem.splitlines():
        print(f"    {line}")
    print()
    print(f"  next → {cycle.next_prompt}")
    print()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the HTTP server."""
    import uvicorn
    from poetloop.config import get_config

    cfg = get_config()
    host = args.host or cfg.get("server", {}).get("host", "127.0.0.1")
    port = args.port or cfg.get("server", {}).get("port", 8000)

    print(f"  poetloop v{__version__} on {host}:{port}")
    print(f"  Backend: {cfg.get('backend', {}).get('url', '')}")
    print(f"  Model: {cfg.get('backend', {}).get('model', '')}")
    print()

    uvicorn.run(
        "poetloop.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_evolve(args):
    """Write the next poem(s)."""
    service = _service()
    for _ in range(args.count):
        result = asyncio.run(service.evolve_poet())
        if result.ok is None:
            print(f"  ✗  Evolution failed: {result.err}")
            raise SystemExit(1)
        _print_poem(result.ok, args.json)


def cmd_poems(args):
    """Show every poem, or a single cycle."""
    from poetloop.errors import PoetLoopError

    service = _service()
    if args.cycle is not None:
        try:
            cycle = service.get_poem_by_cycle(args.cycle)
        except PoetLoopError as e:
            print(f"  ✗  {e}")
            raise SystemExit(1)
        if cycle is None:
            print(f"  No poem for cycle {args.cycle}")
            raise SystemExit(1)
        poems = [cycle]
    else:
        poems = service.get_all_poems()

    if args.json:
        print(json.dumps([p.to_dict() for p in poems], indent=2))
        return
    if not poems:
        print("  No poems yet. Run 'poetloop evolve'.")
        return
    for cycle in poems:
        _print_poem(cycle)


def cmd_state(args):
    """Show the poet state and parse stats."""
    service = _service()
    state = service.get_poet_state()
    if state is None:
        print("  Poet uninitialized (no cycles yet)")
        return
    stats = service.get_generation_stats()
    print(f"  Cycle:          {state.current_cycle}")
    print(f"  Total poems:    {state.total_poems}")
    print(f"  Genesis prompt: {state.genesis_prompt}")
    print(f"  Parsed cleanly: {stats['primary_success']}"
          f"  fallback: {stats['fallback_used']}"
          f"  corrected: {stats['correction_used']}")


def cmd_reset(args):
    """Clear all poems and the poet state."""
    if not args.yes:
        answer = input("  Delete every poem? [y/N] ").strip().lower()
        if answer != "y":
            print("  Aborted.")
            return
    cleared = asyncio.run(_service().reset_poet())
    print("  Poet reset." if cleared else "  Nothing to reset.")


def cmd_prompt(args):
    """One-off completion."""
    from poetloop.errors import PoetLoopError

    service = _service()
    try:
        print(asyncio.run(service.prompt(" ".join(args.text))))
    except PoetLoopError as e:
        print(f"  ✗  {e}")
        raise SystemExit(1)


def cmd_steer(args):
    """Override the next prompt of the current poem."""
    service = _service()
    if service.set_next_prompt(" ".join(args.text)):
        print("  Next prompt updated.")
    else:
        print("  No current poem to steer.")
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name plus aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poetloop",
        description="poetloop — chat with memory, and a poet that steers itself.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"poetloop {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"], "Start the HTTP server", cmd_serve, setup_serve)

    def setup_evolve(p):
        p.add_argument("--count", "-n", type=int, default=1, help="Number of cycles to run")
        p.add_argument("--json", action="store_true", help="Print cycles as JSON")

    _add_command(sub, ["evolve", "cycle"], "Write the next poem", cmd_evolve, setup_evolve)

    def setup_poems(p):
        p.add_argument("--cycle", "-c", type=int, default=None, help="Show a single cycle")
        p.add_argument("--json", action="store_true", help="Print as JSON")

    _add_command(sub, ["poems", "list"], "Show every poem", cmd_poems, setup_poems)

    _add_command(sub, ["state", "status"], "Show the poet state", cmd_state)

    def setup_reset(p):
        p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    _add_command(sub, ["reset"], "Clear all poems and the poet state", cmd_reset, setup_reset)

    def setup_text(p):
        p.add_argument("text", nargs="+", help="Prompt text")

    _add_command(sub, ["prompt", "ask"], "One-off completion", cmd_prompt, setup_text)
    _add_command(sub, ["steer"], "Override the next prompt of the current poem", cmd_steer, setup_text)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
