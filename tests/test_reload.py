"""
End-to-end tests: a registry driven by a real crontab file and a real jobs
directory, reacting to edits of both.
"""

import asyncio
import logging
import shutil
from pathlib import Path

import pytest

from kronos.registry import JobRegistry

from .fixtures.helpers import WATCH_DEBOUNCE_MS, WATCH_TIMEOUT, wait_until, write_module

FIXTURE_JOBS = Path(__file__).parent / "fixtures" / "jobs"
JOB_NAME = "empty_with_config"


@pytest.fixture
def workspace(tmp_path):
    jobs_dir = tmp_path / "jobs"
    jobs_dir.mkdir()
    shutil.copy(FIXTURE_JOBS / f"{JOB_NAME}.py", jobs_dir)
    return tmp_path / "kronos.crontab", jobs_dir


@pytest.fixture
async def registry(workspace):
    crontab_file, jobs_dir = workspace
    registry = await JobRegistry.create(
        crontab_path=crontab_file,
        jobs_dir=jobs_dir,
        logger=logging.getLogger("kronos.tests.reload"),
        debounce_ms=WATCH_DEBOUNCE_MS,
    )
    yield registry
    await registry.close()


@pytest.fixture
def loaded_counts(registry):
    counts = []
    registry.on_loaded(counts.append)
    return counts


def crontab_lines(path):
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


class TestDirectoryJobs:
    """Jobs built from the jobs directory."""

    async def test_module_becomes_active_job(self, registry, workspace):
        crontab_file, _ = workspace

        assert registry.count() == 1
        handle = registry.job(JOB_NAME)
        assert handle is not None
        assert handle.is_active is True
        assert handle.schedule == "* * * * *"
        assert handle.timezone == "UTC"

        lines = crontab_lines(crontab_file)
        assert len(lines) == 1
        assert lines[0].endswith(JOB_NAME)
        assert lines[0] == f"* * * * * {JOB_NAME}"

    async def test_existing_crontab_entry_is_used(self, workspace):
        crontab_file, jobs_dir = workspace
        crontab_file.write_text(f"0 0 * * * * {JOB_NAME}\n", encoding="utf-8")

        registry = await JobRegistry.create(
            crontab_path=crontab_file, jobs_dir=jobs_dir, debounce_ms=WATCH_DEBOUNCE_MS
        )
        try:
            assert registry.job(JOB_NAME).schedule == "0 0 * * * *"
            assert crontab_lines(crontab_file) == [f"0 0 * * * * {JOB_NAME}"]
        finally:
            await registry.close()

    async def test_invalid_module_config_is_skipped(self, workspace, caplog):
        crontab_file, jobs_dir = workspace
        write_module(
            jobs_dir / "bad_schedule.py",
            "def default():\n    pass\n\nconfig = {'schedule': 'not a schedule'}\n",
        )
        write_module(
            jobs_dir / "bad_config.py",
            "def default():\n    pass\n\n"
            "def config():\n    raise RuntimeError('config exploded')\n",
        )

        with caplog.at_level(logging.ERROR, logger="kronos.tests.reload"):
            registry = await JobRegistry.create(
                crontab_path=crontab_file,
                jobs_dir=jobs_dir,
                logger=logging.getLogger("kronos.tests.reload"),
                debounce_ms=WATCH_DEBOUNCE_MS,
            )
        try:
            assert [handle.name for handle in registry.list_jobs()] == [JOB_NAME]
            assert "bad_schedule" not in registry.crontab
            assert "/bad_config.py" in caplog.text
            assert "config exploded" in caplog.text
        finally:
            await registry.close()


class TestCrontabEdits:
    """External edits of the crontab file."""

    async def test_orphan_entry_reloads_without_new_job(
        self, registry, workspace, loaded_counts
    ):
        crontab_file, _ = workspace
        crontab_file.write_text(
            f"* * * * * {JOB_NAME}\n* * * * * * externalJob\n", encoding="utf-8"
        )

        await wait_until(lambda: len(loaded_counts) > 0, WATCH_TIMEOUT)

        assert loaded_counts[-1] == 1
        assert registry.job("externalJob") is None
        assert registry.crontab.get("externalJob") == "* * * * * *"
        assert registry.job(JOB_NAME).is_active is True

    async def test_schedule_edit_is_applied(self, registry, workspace):
        crontab_file, _ = workspace
        previous = registry.job(JOB_NAME)

        crontab_file.write_text(f"*/5 * * * * * {JOB_NAME}\n", encoding="utf-8")

        await wait_until(lambda: registry.job(JOB_NAME).schedule == "*/5 * * * * *")
        assert registry.job(JOB_NAME) is not previous
        assert previous.is_active is False
        assert registry.job(JOB_NAME).is_active is True

    async def test_removed_entry_is_seeded_again(self, registry, workspace, loaded_counts):
        crontab_file, _ = workspace
        crontab_file.write_text("# emptied by hand\n", encoding="utf-8")

        await wait_until(lambda: len(loaded_counts) > 0)
        assert registry.crontab.get(JOB_NAME) == "* * * * *"
        assert crontab_lines(crontab_file) == [f"* * * * * {JOB_NAME}"]

    async def test_no_reload_for_own_writes(self, registry, loaded_counts):
        registry.crontab.set("manual", "0 0 * * *")
        await asyncio.sleep(0.5)

        assert loaded_counts == []


class TestDirectoryEdits:
    """Adding and removing job modules."""

    async def test_new_module_adds_job(self, registry, workspace):
        crontab_file, jobs_dir = workspace
        write_module(
            jobs_dir / "second.py",
            "def default():\n    pass\n\nconfig = {'schedule': '0 12 * * *', 'start': True}\n",
        )

        await wait_until(lambda: registry.job("second") is not None)
        assert registry.count() == 2
        assert registry.job("second").is_active is True
        assert registry.crontab.get("second") == "0 12 * * *"
        await wait_until(lambda: "0 12 * * * second" in crontab_lines(crontab_file))

    async def test_deleted_module_removes_job_keeps_entry(self, registry, workspace):
        crontab_file, jobs_dir = workspace
        handle = registry.job(JOB_NAME)

        (jobs_dir / f"{JOB_NAME}.py").unlink()

        await wait_until(lambda: registry.job(JOB_NAME) is None)
        assert registry.count() == 0
        assert handle.is_active is False
        assert registry.crontab.get(JOB_NAME) == "* * * * *"
        assert crontab_lines(crontab_file) == [f"* * * * * {JOB_NAME}"]

    async def test_broken_module_added_later_is_skipped(
        self, registry, workspace, loaded_counts
    ):
        _, jobs_dir = workspace
        write_module(jobs_dir / "later.py", "def default(:\n")

        await wait_until(lambda: len(loaded_counts) > 0)
        assert [handle.name for handle in registry.list_jobs()] == [JOB_NAME]


class TestStartupEdits:
    """Edits that land while the first scan is still running."""

    async def test_crontab_edit_during_initial_load(self, tmp_path):
        crontab_file = tmp_path / "kronos.crontab"
        jobs_dir = tmp_path / "jobs"
        write_module(
            jobs_dir / "a_fast.py",
            "def default():\n    pass\n\nconfig = {'start': True}\n",
        )
        write_module(
            jobs_dir / "b_slow.py",
            "import asyncio\n\n\ndef default():\n    pass\n\n\n"
            "async def config():\n    await asyncio.sleep(1.5)\n    return {}\n",
        )

        creating = asyncio.create_task(
            JobRegistry.create(
                crontab_path=crontab_file, jobs_dir=jobs_dir, debounce_ms=WATCH_DEBOUNCE_MS
            )
        )
        await wait_until(
            lambda: crontab_file.exists()
            and "* * * * * a_fast" in crontab_lines(crontab_file)
        )
        crontab_file.write_text("0 0 * * * * a_fast\n", encoding="utf-8")

        registry = await asyncio.wait_for(creating, WATCH_TIMEOUT)
        try:
            await wait_until(
                lambda: registry.job("a_fast") is not None
                and registry.job("a_fast").schedule == "0 0 * * * *"
            )
            assert registry.job("a_fast").is_active is True
        finally:
            await registry.close()

    async def test_missing_jobs_directory_fails_creation(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await JobRegistry.create(
                crontab_path=tmp_path / "kronos.crontab",
                jobs_dir=tmp_path / "absent",
                debounce_ms=WATCH_DEBOUNCE_MS,
            )
