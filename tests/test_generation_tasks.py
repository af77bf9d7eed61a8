"""Tests for the Celery generation task, run eagerly with a stubbed pipeline run."""

import asyncio

import pytest

from mediaforge.services.error_handling import GenerationFailedError, StorageError, StorageErrorCode
from mediaforge.tasks import run_async
from mediaforge.tasks import generation_tasks


def test_run_async_reuses_thread_loop():
    async def loop_id():
        return id(asyncio.get_running_loop())

    assert run_async(loop_id()) == run_async(loop_id())


class _Recorded(list):
    pass


@pytest.fixture
def recorded(monkeypatch):
    calls = _Recorded()

    def install(outcome):
        async def fake_execute(request, user_id, job_id):
            calls.append((request, user_id, job_id))
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        monkeypatch.setattr(generation_tasks, "_execute", fake_execute)

    calls.install = install
    return calls


def test_success_returns_serialised_result(recorded):
    recorded.install({"job": {"id": "job-1", "status": "succeeded"}, "assets": []})

    result = generation_tasks.run_generation.apply(kwargs={
        "model_id": "fast-image",
        "raw_params": {"prompt": "a cat"},
        "user_id": "user-1",
    }).get()

    assert result["job"]["id"] == "job-1"
    request, user_id, job_id = recorded[0]
    assert request.model_id == "fast-image"
    assert request.raw_params == {"prompt": "a cat"}
    assert request.image_inputs == []
    assert user_id == "user-1"
    assert job_id is None


def test_storage_error_returns_user_message(recorded):
    recorded.install(StorageError(StorageErrorCode.UNAUTHORIZED, "401 from api.replicate.com", "prediction-submit"))

    result = generation_tasks.run_generation.apply(kwargs={"model_id": "fast-image"}).get()

    assert result["status"] == "error"
    assert result["code"] == "UNAUTHORIZED"
    assert "401" not in result["error"]


def test_failed_generation_returns_error(recorded):
    recorded.install(GenerationFailedError("job-2", "failed", "nsfw"))

    result = generation_tasks.run_generation.apply(kwargs={"model_id": "fast-image", "job_id": "job-2"}).get()

    assert result == {"status": "error", "job_id": "job-2", "error": "The generation failed."}
    assert "nsfw" not in str(result)
    assert recorded[0][2] == "job-2"
