"""Tests for the project, pipeline and settings repositories."""

import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.repos import pipeline_repo, project_repo, settings_repo
from tests.conftest import PIPELINE_ID, PROJECT_ID


# ---------------------------------------------------------------------------
# project_repo
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@patch("app.repos.project_repo.get_pool")
async def test_get_project_by_id(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = {"id": PROJECT_ID, "name": "Skyfall"}
    mock_get_pool.return_value = pool

    result = await project_repo.get_project_by_id(PROJECT_ID)

    assert result["name"] == "Skyfall"
    pool.fetchrow.assert_called_once()


@pytest.mark.asyncio
@patch("app.repos.project_repo.get_pool")
async def test_get_project_by_id_missing(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = None
    mock_get_pool.return_value = pool

    assert await project_repo.get_project_by_id(PROJECT_ID) is None


# ---------------------------------------------------------------------------
# pipeline_repo
# ---------------------------------------------------------------------------


def _process_row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "pipeline_id": PIPELINE_ID,
        "name": "Set symbols",
        "process_type": "DefineSymbols",
        "phase": "PreBuild",
        "order": 1,
        "configuration_json": json.dumps({"add": ["RELEASE"]}),
        "is_enabled": True,
        "position": 1,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_get_processes_parses_configuration(mock_get_pool):
    pool = AsyncMock()
    pool.fetch.return_value = [_process_row()]
    mock_get_pool.return_value = pool

    processes = await pipeline_repo.get_processes(PIPELINE_ID)

    assert processes[0]["configuration"] == {"add": ["RELEASE"]}
    assert "configuration_json" not in processes[0]
    assert "ORDER BY position" in pool.fetch.call_args.args[0]


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_get_processes_bad_configuration_becomes_empty(mock_get_pool):
    pool = AsyncMock()
    pool.fetch.return_value = [
        _process_row(configuration_json="{not json"),
        _process_row(configuration_json=None),
        _process_row(configuration_json='["a list"]'),
    ]
    mock_get_pool.return_value = pool

    processes = await pipeline_repo.get_processes(PIPELINE_ID)

    assert [p["configuration"] for p in processes] == [{}, {}, {}]


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_get_default_pipeline_prefers_project_scope(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = {"id": PIPELINE_ID, "project_id": PROJECT_ID}
    mock_get_pool.return_value = pool

    result = await pipeline_repo.get_default_pipeline(PROJECT_ID)

    assert result["id"] == PIPELINE_ID
    assert "ORDER BY bp.project_id IS NULL" in pool.fetchrow.call_args.args[0]


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_get_pipeline_by_id_missing(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = None
    mock_get_pool.return_value = pool

    assert await pipeline_repo.get_pipeline_by_id(PIPELINE_ID) is None


class _Context:
    """Async context manager yielding *value* (pool.acquire / conn.transaction)."""

    def __init__(self, value=None):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, *exc):
        return False


def _pool_with_conn():
    conn = AsyncMock()
    conn.transaction = MagicMock(return_value=_Context())
    pool = AsyncMock()
    pool.acquire = MagicMock(return_value=_Context(conn))
    return pool, conn


_PIPELINE_ROW = {
    "id": PIPELINE_ID, "name": "Release", "description": None, "project_id": PROJECT_ID,
    "is_default": True, "is_active": True, "created_at": None, "updated_at": None,
}


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_list_pipelines_includes_global_and_counts(mock_get_pool):
    pool = AsyncMock()
    pool.fetch.return_value = [{**_PIPELINE_ROW, "process_count": 3}]
    mock_get_pool.return_value = pool

    rows = await pipeline_repo.list_pipelines(PROJECT_ID)

    query, project_id = pool.fetch.call_args.args
    assert "bp.project_id IS NULL" in query
    assert "ORDER BY bp.name" in query
    assert project_id == PROJECT_ID
    assert rows[0]["process_count"] == 3


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_create_default_pipeline_demotes_previous_default(mock_get_pool):
    pool, conn = _pool_with_conn()
    conn.fetchrow.return_value = _PIPELINE_ROW
    mock_get_pool.return_value = pool

    row = await pipeline_repo.create_pipeline("Release", project_id=PROJECT_ID, is_default=True)

    clear_query, scope, keep = conn.execute.call_args.args
    assert "SET is_default = false" in clear_query
    assert "IS NOT DISTINCT FROM" in clear_query
    assert (scope, keep) == (PROJECT_ID, None)
    assert "INSERT INTO build_pipelines" in conn.fetchrow.call_args.args[0]
    assert row["is_default"] is True


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_create_non_default_pipeline_leaves_defaults(mock_get_pool):
    pool, conn = _pool_with_conn()
    conn.fetchrow.return_value = {**_PIPELINE_ROW, "is_default": False}
    mock_get_pool.return_value = pool

    await pipeline_repo.create_pipeline("Nightly")

    conn.execute.assert_not_awaited()


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_update_pipeline_to_default_demotes_others_in_scope(mock_get_pool):
    pool, conn = _pool_with_conn()
    conn.fetchrow.side_effect = [{"project_id": PROJECT_ID}, _PIPELINE_ROW]
    mock_get_pool.return_value = pool

    row = await pipeline_repo.update_pipeline(PIPELINE_ID, is_default=True)

    assert conn.execute.call_args.args[1:] == (PROJECT_ID, PIPELINE_ID)
    update_query, *args = conn.fetchrow.call_args.args
    assert "COALESCE($2, name)" in update_query
    assert args == [PIPELINE_ID, None, None, True, None]
    assert row["id"] == PIPELINE_ID


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_update_missing_pipeline_returns_none(mock_get_pool):
    pool, conn = _pool_with_conn()
    conn.fetchrow.return_value = None
    mock_get_pool.return_value = pool

    assert await pipeline_repo.update_pipeline(PIPELINE_ID, is_default=True) is None
    conn.execute.assert_not_awaited()


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_delete_pipeline(mock_get_pool):
    pool = AsyncMock()
    pool.execute.side_effect = ["DELETE 1", "DELETE 0"]
    mock_get_pool.return_value = pool

    assert await pipeline_repo.delete_pipeline(PIPELINE_ID) is True
    assert await pipeline_repo.delete_pipeline(PIPELINE_ID) is False


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_add_process_serializes_configuration_without_retry(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = _process_row(position=7)
    mock_get_pool.return_value = pool

    process = await pipeline_repo.add_process(
        PIPELINE_ID, name="Set symbols", process_type="DefineSymbols",
        phase="PreBuild", order=1, configuration={"add": ["RELEASE"], "remove": []},
    )

    query, *args = pool.fetchrow.call_args.args
    assert "INSERT INTO build_processes" in query
    assert "position" not in query.split("VALUES")[0]
    assert json.loads(args[-1]) == {"add": ["RELEASE"], "remove": []}
    assert pool.fetchrow.call_args.kwargs == {"retry": False}
    assert process["position"] == 7
    assert process["configuration"] == {"add": ["RELEASE"]}


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_update_process_keeps_unset_columns(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = _process_row(is_enabled=False)
    mock_get_pool.return_value = pool
    process_id = uuid.uuid4()

    process = await pipeline_repo.update_process(PIPELINE_ID, process_id, is_enabled=False)

    query, *args = pool.fetchrow.call_args.args
    assert "COALESCE($6, configuration_json)" in query
    assert args == [PIPELINE_ID, process_id, None, None, None, None, False]
    assert process["is_enabled"] is False


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_get_process_scoped_to_pipeline(mock_get_pool):
    pool = AsyncMock()
    pool.fetchrow.return_value = None
    mock_get_pool.return_value = pool
    process_id = uuid.uuid4()

    assert await pipeline_repo.get_process(PIPELINE_ID, process_id) is None
    assert pool.fetchrow.call_args.args[1:] == (PIPELINE_ID, process_id)


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_delete_process(mock_get_pool):
    pool = AsyncMock()
    pool.execute.return_value = "DELETE 0"
    mock_get_pool.return_value = pool

    assert await pipeline_repo.delete_process(PIPELINE_ID, uuid.uuid4()) is False


@pytest.mark.asyncio
@patch("app.repos.pipeline_repo.get_pool")
async def test_reorder_processes_uses_list_index(mock_get_pool):
    pool = AsyncMock()
    pool.execute.return_value = "UPDATE 2"
    mock_get_pool.return_value = pool
    ids = [uuid.uuid4(), uuid.uuid4()]

    assert await pipeline_repo.reorder_processes(PIPELINE_ID, ids) == 2

    query, pipeline_id, passed_ids = pool.execute.call_args.args
    assert "WITH ORDINALITY" in query
    assert '"order" = ids.idx - 1' in query
    assert (pipeline_id, passed_ids) == (PIPELINE_ID, ids)


# ---------------------------------------------------------------------------
# settings_repo
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@patch("app.repos.settings_repo.get_pool")
async def test_get_setting(mock_get_pool):
    pool = AsyncMock()
    pool.fetchval.return_value = "{}"
    mock_get_pool.return_value = pool

    assert await settings_repo.get_setting("notifications") == "{}"
    assert pool.fetchval.call_args.args[1] == "notifications"


@pytest.mark.asyncio
@patch("app.repos.settings_repo.get_pool")
async def test_set_setting_upserts(mock_get_pool):
    pool = AsyncMock()
    mock_get_pool.return_value = pool

    await settings_repo.set_setting("notifications", "{}")

    query, key, value = pool.execute.call_args.args
    assert "ON CONFLICT (key) DO UPDATE" in query
    assert (key, value) == ("notifications", "{}")
