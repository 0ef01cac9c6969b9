"""
Операционные команды для очереди скрапинга.

Использование:
    python -m apl_scraper.cli.queue_admin stats
    python -m apl_scraper.cli.queue_admin enqueue <job_id> [--priority 5]
    python -m apl_scraper.cli.queue_admin enqueue-bulk <job_id> <job_id> ...
    python -m apl_scraper.cli.queue_admin retry-failed
    python -m apl_scraper.cli.queue_admin recover
    python -m apl_scraper.cli.queue_admin clear --yes
"""
import argparse
import asyncio
import json
import sys

from loguru import logger
from supabase import create_client

from apl_scraper.config import load_settings
from apl_scraper.database import recover_stuck_queue_items
from apl_scraper.worker.queue import JobQueue


async def run_command(args: argparse.Namespace) -> int:
    """Выполнить команду. Возвращает exit code."""
    settings = load_settings()
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())
    queue = JobQueue(db, settings)

    try:
        if args.command == "stats":
            print(json.dumps(await queue.stats(), indent=2))

        elif args.command == "enqueue":
            item_id = await queue.enqueue(args.job_id, priority=args.priority)
            if item_id is None:
                logger.warning(f"Job {args.job_id} is already queued")
                return 1
            logger.info(f"Queued job {args.job_id} as {item_id}")

        elif args.command == "enqueue-bulk":
            jobs = [{"id": job_id, "priority": args.priority} for job_id in args.job_ids]
            item_ids = await queue.enqueue_bulk(jobs)
            logger.info(f"Queued {sum(1 for i in item_ids if i)}/{len(jobs)} jobs")

        elif args.command == "retry-failed":
            retried = await queue.retry_failed()
            logger.info(f"Re-armed {retried} failed jobs")

        elif args.command == "recover":
            recovered = await recover_stuck_queue_items(db, settings.stuck_job_minutes)
            logger.info(f"Recovered {recovered} stuck queue items")

        elif args.command == "clear":
            if not args.yes:
                logger.error("Refusing to clear the queue without --yes")
                return 2
            removed = await queue.clear()
            logger.info(f"Removed {removed} queue items")

        return 0
    finally:
        await queue.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Управление очередью скрапинга")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Количество задач по состояниям")

    enqueue = sub.add_parser("enqueue", help="Поставить задачу в очередь")
    enqueue.add_argument("job_id")
    enqueue.add_argument("--priority", type=int, default=0)

    bulk = sub.add_parser("enqueue-bulk", help="Поставить несколько задач со сдвигом")
    bulk.add_argument("job_ids", nargs="+")
    bulk.add_argument("--priority", type=int, default=0)

    sub.add_parser("retry-failed", help="Перепоставить все failed задачи")
    sub.add_parser("recover", help="Вернуть зависшие active задачи")

    clear = sub.add_parser("clear", help="Удалить все элементы очереди")
    clear.add_argument("--yes", action="store_true", help="Подтвердить удаление")

    return parser


def main() -> None:
    args = build_parser().parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    sys.exit(asyncio.run(run_command(args)))


if __name__ == "__main__":
    main()
