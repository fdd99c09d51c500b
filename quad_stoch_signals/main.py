from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Dict

from .config import load_config
from .models import ScannerResult
from .runner import ScanRunner

log = logging.getLogger("main")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def _report(results: Dict[str, ScannerResult]) -> None:
    for sym in sorted(results):
        res = results[sym]
        best = res.best_strength.value if res.best_strength else "-"
        log.info("result symbol=%s signals=%d best=%s", sym, len(res.signals), best)


async def _serve(runner: ScanRunner, once: bool) -> None:
    try:
        if once:
            _report(await runner.scanner.scan_once())
        else:
            await runner.run_forever()
    finally:
        await runner.close()


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Quad stochastic multi-symbol signal scanner")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--once", action="store_true", help="Run a single scan cycle and exit")
    p.add_argument("--log-level", default=None, help="Override app.log_level")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _configure_logging(args.log_level or cfg.app.log_level)

    try:
        asyncio.run(_serve(ScanRunner(cfg), args.once))
    except KeyboardInterrupt:
        log.info("stopped")
    except Exception as e:
        log.exception("fatal err=%s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
