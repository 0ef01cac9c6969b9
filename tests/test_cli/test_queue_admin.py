"""Тесты CLI управления очередью."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.conftest import make_settings


def _queue() -> MagicMock:
    queue = MagicMock()
    queue.stats = AsyncMock(return_value={"waiting": 1, "total": 1})
    queue.enqueue = AsyncMock(return_value="q-1")
    queue.enqueue_bulk = AsyncMock(return_value=["q-1", None])
    queue.retry_failed = AsyncMock(return_value=3)
    queue.clear = AsyncMock(return_value=5)
    queue.close = AsyncMock()
    return queue


class TestRunCommand:
    """Тесты run_command."""

    @pytest.mark.asyncio
    async def test_stats_prints_json(self, capsys) -> None:
        from apl_scraper.cli.queue_admin import build_parser, run_command

        queue = _queue()
        with patch.multiple(
            "apl_scraper.cli.queue_admin",
            load_settings=MagicMock(return_value=make_settings()),
            create_client=MagicMock(),
            JobQueue=MagicMock(return_value=queue),
        ):
            code = await run_command(build_parser().parse_args(["stats"]))

        assert code == 0
        assert '"waiting": 1' in capsys.readouterr().out
        queue.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enqueue_duplicate_exit_code(self) -> None:
        from apl_scraper.cli.queue_admin import build_parser, run_command

        queue = _queue()
        queue.enqueue = AsyncMock(return_value=None)
        with patch.multiple(
            "apl_scraper.cli.queue_admin",
            load_settings=MagicMock(return_value=make_settings()),
            create_client=MagicMock(),
            JobQueue=MagicMock(return_value=queue),
        ):
            code = await run_command(build_parser().parse_args(["enqueue", "job-1", "--priority", "4"]))

        assert code == 1
        queue.enqueue.assert_awaited_once_with("job-1", priority=4)

    @pytest.mark.asyncio
    async def test_enqueue_bulk(self) -> None:
        from apl_scraper.cli.queue_admin import build_parser, run_command

        queue = _queue()
        with patch.multiple(
            "apl_scraper.cli.queue_admin",
            load_settings=MagicMock(return_value=make_settings()),
            create_client=MagicMock(),
            JobQueue=MagicMock(return_value=queue),
        ):
            code = await run_command(build_parser().parse_args(["enqueue-bulk", "a", "b"]))

        assert code == 0
        queue.enqueue_bulk.assert_awaited_once_with([
            {"id": "a", "priority": 0},
            {"id": "b", "priority": 0},
        ])

    @pytest.mark.asyncio
    async def test_clear_requires_confirmation(self) -> None:
        from apl_scraper.cli.queue_admin import build_parser, run_command

        queue = _queue()
        with patch.multiple(
            "apl_scraper.cli.queue_admin",
            load_settings=MagicMock(return_value=make_settings()),
            create_client=MagicMock(),
            JobQueue=MagicMock(return_value=queue),
        ):
            code = await run_command(build_parser().parse_args(["clear"]))

        assert code == 2
        queue.clear.assert_not_called()
        queue.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_recover_uses_threshold(self) -> None:
        from apl_scraper.cli.queue_admin import build_parser, run_command

        db = MagicMock()
        with (
            patch.multiple(
                "apl_scraper.cli.queue_admin",
                load_settings=MagicMock(return_value=make_settings(stuck_job_minutes=15)),
                create_client=MagicMock(return_value=db),
                JobQueue=MagicMock(return_value=_queue()),
            ),
            patch(
                "apl_scraper.cli.queue_admin.recover_stuck_queue_items",
                new_callable=AsyncMock,
                return_value=2,
            ) as mock_recover,
        ):
            code = await run_command(build_parser().parse_args(["recover"]))

        assert code == 0
        mock_recover.assert_awaited_once_with(db, 15)


class TestParser:
    def test_unknown_command_exits(self) -> None:
        from apl_scraper.cli.queue_admin import build_parser

        with pytest.raises(SystemExit):
            build_parser().parse_args(["explode"])
