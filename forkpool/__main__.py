"""
Demo entry point: every worker counts its own launches in its saved result
and marks itself finished after a given number of them.

    python -m forkpool --workers 4 --iterations 10 --verbose
"""
import sys
import json
import logging
import argparse
from typing import List, Optional

from forkpool.log import setup_logging
from forkpool.supervisor import Supervisor, Worker

log = logging.getLogger("forkpool.demo")


def make_counter_task(iterations: int):
    """Builds a task that finishes on its `iterations`-th launch."""
    def count_launches(worker: Worker) -> None:
        data = worker.get_saved_result() or {"count": 0}
        data["count"] += 1
        data["slot"] = worker.get_thread_number()
        worker.save_result(data)
        log.info(f"Worker #{data['slot']} launch {data['count']}/{iterations}")
        if data["count"] >= iterations:
            worker.mark_finished()
    return count_launches


def on_interrupted(worker: Worker, signum: int) -> None:
    log.info(f"Worker #{worker.get_thread_number()} interrupted with signal {signum}, state: {worker.get_saved_result()}")


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the demo."""
    parser = argparse.ArgumentParser(prog="forkpool", description="Run the launch-counting demo pool.")
    parser.add_argument("--workers", type=int, default=2, help="number of worker processes")
    parser.add_argument("--iterations", type=int, default=3, help="launches per worker before it finishes")
    parser.add_argument("--poll-interval", type=int, default=None, help="milliseconds between polling sweeps")
    parser.add_argument("--verbose", action="store_true", help="log at DEBUG level")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    supervisor = (
        Supervisor(args.workers)
        .set_task(make_counter_task(args.iterations))
        .set_interrupted_handler(on_interrupted)
    )
    if args.poll_interval is not None:
        supervisor.set_poll_interval(args.poll_interval)

    results = supervisor.run()
    print(json.dumps(results, indent=4))
    return 0


if __name__ == "__main__":
    sys.exit(main())
