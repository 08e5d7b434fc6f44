"""Local entry point for a NovaPay worker.

Deployments normally run ``celery -A infrastructure.tasks.config.celery worker -B``;
this script starts a worker with the embedded beat scheduler so the outbox
drain and expiry sweep run without a separate process.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--beat",
            "--hostname=novapay@%h",
            "--queues=high,default,low",
            "--loglevel=INFO",
        ]
    )


if __name__ == "__main__":
    main()
