"""Entry point for a local payment worker.

Deployments run the Celery CLI directly, e.g.
`celery -A infrastructure.tasks.config.celery:celery_app worker -Q default,low -B`.
Pass `--beat` here to run the sweep scheduler in the same process.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


def main(argv: list[str] | None = None) -> None:
    args = list(sys.argv[1:] if argv is None else argv)
    worker_argv = ["worker", "--hostname=payments@%h", "--queues=high,default,low", "--loglevel=INFO"]
    if "--beat" in args:
        args.remove("--beat")
        worker_argv.append("--beat")
    celery_app.worker_main(argv=worker_argv + args)


if __name__ == "__main__":
    main()
