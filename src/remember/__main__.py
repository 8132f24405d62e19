"""Entry point: python -m remember <command>

- list                      Entries with their decay level (default)
- add TITLE [CONTENT] [#tag ...]
- restore ID                Restore an entry (asks its questions if it has any)
- delete ID
- tags                      All tags in use
- unit [minutes|hours|days] Show or change the decay unit
- achievements              Streak counters and unlocked achievements
- sync                      Run one sync pass
- serve                     Daemon mode (refresh, reminders, sync)
"""

from __future__ import annotations

import asyncio
import logging
import sys

from remember.config import load_config
from remember.errors import JournalError

USAGE = """\
Usage: python -m remember [command]
  list                       Entries with their decay level (default)
  add TITLE [CONTENT] [#tag] Save a new entry
  restore ID                 Restore an entry
  delete ID                  Delete an entry
  tags                       List tags in use
  unit [minutes|hours|days]  Show or change the decay unit
  achievements               Show streaks and achievements
  sync                       Run one sync pass
  serve                      Daemon mode with scheduler"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_journal(config):
    from remember.daemon import JournalDaemon

    return JournalDaemon(config)._build_journal()


def _cmd_list(journal, args: list[str]) -> None:
    for entry in journal.entries():
        tags = " ".join(f"#{t}" for t in sorted(entry.tags))
        print(f"{entry.id[:8]}  {entry.decay_level:3d}%  {entry.title}  {tags}".rstrip())


def _cmd_add(journal, args: list[str]) -> None:
    if not args:
        raise SystemExit("add requires a TITLE")
    tags = [a[1:] for a in args[1:] if a.startswith("#")]
    words = [a for a in args[1:] if not a.startswith("#")]
    entry = journal.create(args[0], " ".join(words), tags)
    print(entry.id)


def _resolve_id(journal, prefix: str) -> str:
    matches = [e.id for e in journal.entries() if e.id.startswith(prefix)]
    if len(matches) != 1:
        raise SystemExit(f"No unique entry matches {prefix!r}")
    return matches[0]


def _cmd_restore(journal, args: list[str]) -> None:
    if not args:
        raise SystemExit("restore requires an ID")
    entry_id = _resolve_id(journal, args[0])
    entry = journal.get(entry_id)
    if not entry.has_challenge:
        journal.restore(entry_id)
        print(f"Restored: {entry.title}")
        return
    answers = [input(f"{q.question} ") for q in entry.questions]
    result = journal.complete_challenge(entry_id, answers)
    if result.passed:
        print(f"Restored: {entry.title} ({result.score:.0%} correct)")
    else:
        print(f"Not restored ({result.score:.0%} correct)")


def _cmd_delete(journal, args: list[str]) -> None:
    if not args:
        raise SystemExit("delete requires an ID")
    journal.delete(_resolve_id(journal, args[0]))


def _cmd_tags(journal, args: list[str]) -> None:
    for tag in journal.tags():
        print(tag)


def _cmd_unit(journal, args: list[str]) -> None:
    if args:
        journal.set_decay_unit(args[0])
    print(journal.settings.decay_time_unit.value)


def _cmd_achievements(journal, args: list[str]) -> None:
    from remember.journal.achievements import CATALOG

    state = journal.achievement_snapshot()
    print(f"Restored: {state.total_restored}")
    print(f"Streak: {state.current_streak} (longest {state.longest_streak})")
    for achievement in CATALOG:
        mark = "x" if state.is_unlocked(achievement.id) else " "
        print(f"[{mark}] {achievement.title}: {achievement.description}")


def _cmd_sync(journal, args: list[str]) -> None:
    async def _once():
        try:
            return await journal.sync()
        finally:
            await journal.close()

    report = asyncio.run(_once())
    if report.skipped:
        print("Sync disabled (no backend or no user)")
    else:
        print(
            f"up={report.uploaded} down={report.downloaded} "
            f"deleted={report.deleted_remote} failed={len(report.failed)}"
        )


COMMANDS = {
    "list": _cmd_list,
    "add": _cmd_add,
    "restore": _cmd_restore,
    "delete": _cmd_delete,
    "tags": _cmd_tags,
    "unit": _cmd_unit,
    "achievements": _cmd_achievements,
    "sync": _cmd_sync,
}


def _run_serve() -> None:
    """Daemon mode: scheduler with refresh, reminders and sync."""
    config = load_config()
    _setup_logging(config.log_level)

    from remember.daemon import JournalDaemon

    daemon = JournalDaemon(config)
    asyncio.run(daemon.run())


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "list"
    args = sys.argv[2:]

    if cmd == "serve":
        _run_serve()
        return
    handler = COMMANDS.get(cmd)
    if handler is None:
        print(USAGE)
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    journal = _build_journal(config)
    try:
        handler(journal, args)
    except (JournalError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
