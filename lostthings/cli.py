from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional
import sys
import time

from .engine.adapters.storage import FileKeyValueStore
from .engine.game import Game
from .engine.level_ledger import LevelLedger, PROGRESS_KEY, ProgressRecord
from .engine.settings_io import GameSettings


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lostthings", description="Lost Little Things asset and progress tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd")

    p_check = sub.add_parser("check", help="Load the asset catalogue and report what failed")
    p_check.add_argument("--assets", type=str, default=".", help="Directory the asset sources are relative to")
    p_check.add_argument("--save-dir", type=str, default="save", help="Save directory (settings/progress)")
    p_check.add_argument("--long-audio", action="store_true", help="Also load the background music group")
    p_check.add_argument("--retry", type=int, default=0, help="Retry failed assets up to N times")
    p_check.add_argument("--timeout", type=float, default=None, help="Initialization watchdog in seconds")

    p_progress = sub.add_parser("progress", help="Show level progression statistics")
    p_progress.add_argument("--assets", type=str, default=".", help="Directory the asset sources are relative to")
    p_progress.add_argument("--save-dir", type=str, default="save", help="Save directory")

    p_reset = sub.add_parser("reset", help="Reset level progress")
    p_reset.add_argument("--save-dir", type=str, default="save", help="Save directory")
    p_reset.add_argument("--all", action="store_true", help="Also reset settings")

    args = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "check":
        return asyncio.run(_cmd_check(
            assets=args.assets,
            save_dir=args.save_dir,
            long_audio=bool(args.long_audio),
            retries=max(0, args.retry),
            timeout=args.timeout,
        ))
    if args.cmd == "progress":
        return asyncio.run(_cmd_progress(assets=args.assets, save_dir=args.save_dir))
    if args.cmd == "reset":
        return _cmd_reset(save_dir=args.save_dir, everything=bool(args.all))

    parser.print_help()
    return 2


async def _cmd_check(
    *,
    assets: str,
    save_dir: str,
    long_audio: bool,
    retries: int,
    timeout: Optional[float],
) -> int:
    kwargs = {"init_timeout": timeout} if timeout is not None else {}
    game = Game.from_directories(assets, save_dir, **kwargs)
    try:
        report = await game.boot(long_audio=long_audio)
        results = dict(report.results)
        for attempt in range(1, retries + 1):
            if not game.assets.failed_keys():
                break
            results[f"retry {attempt}"] = await game.assets.retry_failed(timeout=game.init_timeout)

        for name, result in results.items():
            print(f"{name:<12} {result.outcome.value:<8} loaded={len(result.loaded)} failed={len(result.failed)}")
            if result.error is not None:
                print(f"  {result.error}")
        if report.timed_out:
            print("initialization timed out")
        failed = sorted(game.assets.failed_keys())
        for key in failed:
            print(f"FAILED {key}: {game.assets.last_error(key) or 'load error'}")
        stats = game.assets.get_stats()
        print(f"progress {stats.percent:.0f}% ({stats.loaded} loaded, {stats.failed} failed)")
        print(f"levels {'ok' if report.levels_ok else 'unavailable'} ({game.levels.total_levels})")
        # Exit status reflects the registry after retries, not the boot report
        ok = report.levels_ok and not report.timed_out and not failed
        return 0 if ok else 1
    finally:
        game.close()


async def _cmd_progress(*, assets: str, save_dir: str) -> int:
    game = Game.from_directories(assets, save_dir)
    try:
        if not await game.levels.initialize():
            print("level catalogue could not be loaded")
            return 1
        ledger: LevelLedger = game.levels
        stats = ledger.get_statistics()
        print(f"completed {stats.completed_levels}/{stats.total_levels} ({stats.completion_percentage}%)")
        for level in ledger.levels:
            marks = []
            if level.index == ledger.current_index:
                marks.append("current")
            if ledger.is_completed(level.index):
                marks.append("done")
            elif not ledger.is_unlocked(level.index):
                marks.append("locked")
            difficulty = ledger.get_level_difficulty(level.index)
            print(f"{level.index:>3} {level.name} [{difficulty}] {' '.join(marks)}".rstrip())
        return 0
    finally:
        game.close()


def _cmd_reset(*, save_dir: str, everything: bool) -> int:
    save_path = Path(save_dir)
    store = FileKeyValueStore(lambda: save_path)
    record = ProgressRecord(timestamp=int(time.time() * 1000))
    try:
        store.set(PROGRESS_KEY, record.to_json())
    except OSError as e:
        print(f"could not reset progress: {e}")
        return 1
    if everything:
        if not GameSettings(store).save():
            print("could not reset settings")
            return 1
        print("progress and settings reset")
    else:
        print("progress reset")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
