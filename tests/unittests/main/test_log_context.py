import asyncio

from catalogfeed.main.log_context import (
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)


def test_log_context_restores_previous_values():
    clear_log_context()
    set_log_context(feed_type="catalog")

    with log_context(job_id="abc", concurrency_key=None):
        assert get_log_context() == {"feed_type": "catalog", "job_id": "abc"}

    assert get_log_context() == {"feed_type": "catalog"}
    clear_log_context()


def test_set_none_removes_key():
    clear_log_context()
    set_log_context(job_id="abc")
    set_log_context(job_id=None)

    assert get_log_context() == {}


async def test_context_is_isolated_per_task():
    clear_log_context()

    async def bind(job_id):
        with log_context(job_id=job_id):
            await asyncio.sleep(0)
            return get_log_context()["job_id"]

    assert await asyncio.gather(bind("a"), bind("b")) == ["a", "b"]
    assert get_log_context() == {}
