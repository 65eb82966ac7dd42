"""Convenience entry point for running the Celery worker.

Most deployments will invoke the standard Celery CLI
(``celery -A infrastructure.tasks worker``); this script is for local runs.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--loglevel=INFO",
            "--hostname=worker@%h",
            "--queues=high,default,low",
        ]
    )


if __name__ == "__main__":
    main()
