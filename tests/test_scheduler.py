import asyncio

import pytest

from subtitle_extract import crud
from subtitle_extract.jobs.extract_subtitles import ExtractSubtitlesJob
from subtitle_extract.localization import LocalizationManager
from subtitle_extract.models import TaskTriggerInfo
from subtitle_extract.scheduler import SchedulerManager
from subtitle_extract.task_manager import TaskManager, TaskStatus

from tests.conftest import FakeEncoder, FakeLibrary, make_item, open_db


async def make_scheduler(db_url, items=()):
    engine, session_factory = await open_db(db_url)
    task_manager = TaskManager(session_factory)
    await task_manager.start()
    scheduler = SchedulerManager(
        session_factory,
        task_manager,
        library_manager=FakeLibrary(list(items)),
        subtitle_encoder=FakeEncoder(),
        localization_manager=LocalizationManager("zh-CN"),
    )
    await scheduler.start()
    return engine, session_factory, task_manager, scheduler


async def shutdown(engine, task_manager, scheduler):
    await scheduler.stop()
    await task_manager.stop()
    await engine.dispose()


def test_discovers_jobs_with_metadata(db_url):
    async def main():
        engine, session_factory, task_manager, scheduler = await make_scheduler(db_url)
        jobs = scheduler.get_available_jobs()
        tasks = await scheduler.get_all_tasks()
        await shutdown(engine, task_manager, scheduler)
        return jobs, tasks

    jobs, tasks = asyncio.run(main())
    assert jobs == [{
        "jobType": "ExtractSubtitles",
        "name": "Subtitle Extract",
        "description": "Extracts embedded subtitles",
        "category": "媒体库",
        "isSystemTask": False,
        "defaultTriggers": [],
    }]
    # 没有默认触发器，所以不会自动创建定时计划
    assert tasks == []


def test_run_job_now_runs_extraction(db_url):
    items = [make_item("a"), make_item("b")]

    async def main():
        engine, session_factory, task_manager, scheduler = await make_scheduler(db_url, items)
        task_id = await scheduler.run_job_now("ExtractSubtitles")
        for _ in range(200):
            async with session_factory() as session:
                record = await crud.get_task_details_from_history(session, task_id)
            if record["status"] == TaskStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        encoder = scheduler.get_job("ExtractSubtitles").extractor.encoder
        await shutdown(engine, task_manager, scheduler)
        return record, encoder.calls

    record, calls = asyncio.run(main())
    assert record["status"] == TaskStatus.COMPLETED
    assert record["progress"] == 100
    assert record["title"] == "Subtitle Extract"
    assert calls == [("a", 2), ("b", 2)]


def test_unknown_job_type_and_bad_cron(db_url):
    async def main():
        engine, session_factory, task_manager, scheduler = await make_scheduler(db_url)
        with pytest.raises(ValueError):
            await scheduler.run_job_now("Nope")
        with pytest.raises(ValueError):
            await scheduler.add_task("x", "Nope", "0 3 * * *", True)
        with pytest.raises(ValueError):
            await scheduler.add_task("x", "ExtractSubtitles", "not a cron", True)
        await shutdown(engine, task_manager, scheduler)

    asyncio.run(main())


def test_scheduled_task_lifecycle(db_url):
    async def main():
        engine, session_factory, task_manager, scheduler = await make_scheduler(db_url)
        created = await scheduler.add_task("Nightly", "ExtractSubtitles", "0 3 * * *", True)
        updated = await scheduler.update_task(created["taskId"], "Weekly", "0 3 * * 0", False)
        paused_job = scheduler.scheduler.get_job(created["taskId"])
        deleted = await scheduler.delete_task(created["taskId"])
        remaining = await scheduler.get_all_tasks()
        await shutdown(engine, task_manager, scheduler)
        return created, updated, paused_job, deleted, remaining

    created, updated, paused_job, deleted, remaining = asyncio.run(main())
    assert created["jobType"] == "ExtractSubtitles"
    assert created["nextRunAt"] is not None
    assert updated["name"] == "Weekly"
    assert updated["isEnabled"] is False
    assert updated["nextRunAt"] is None
    assert paused_job.next_run_time is None
    assert deleted is True
    assert remaining == []


class NightlyExtractJob(ExtractSubtitlesJob):
    job_type = "NightlyExtract"

    def get_default_triggers(self):
        return [TaskTriggerInfo(cronExpression="0 4 * * *")]


def test_default_triggers_are_seeded_once(db_url):
    async def main():
        engine, session_factory, task_manager, scheduler = await make_scheduler(db_url)
        scheduler._jobs["NightlyExtract"] = NightlyExtractJob(
            FakeLibrary([]), FakeEncoder(), LocalizationManager()
        )
        await scheduler._seed_default_triggers()
        await scheduler._seed_default_triggers()
        tasks = await scheduler.get_all_tasks()
        await shutdown(engine, task_manager, scheduler)
        return tasks

    tasks = asyncio.run(main())
    assert [(t["jobType"], t["cronExpression"]) for t in tasks] == [("NightlyExtract", "0 4 * * *")]
