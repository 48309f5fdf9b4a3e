import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from src.app.core.constants import POSTS, USERS
from src.app.core.enums import OrderDirection
from src.app.core.exceptions import Cancelled, DecodeError, InvalidParameter, StoreError
from src.config import Settings
from src.loader.orchestration.batch_loader import BatchLoader
from src.loader.services.group_spec import GroupSpec

SPEC = GroupSpec(group_by="user_id", order_by="id", direction=OrderDirection.DESC, limit=3)


def post(pid, uid):
    return {"id": pid, "user_id": uid, "title": f"post {pid}"}


def make_store(rows=(), *, lateral=True):
    store = AsyncMock()
    store.supports_lateral = lateral
    store.execute.return_value = list(rows)
    return store


def make_loader(**kw) -> BatchLoader:
    return BatchLoader(parent=USERS, child=POSTS, **kw)


def ids(result):
    return {k: [c.id for c in v] for k, v in result.items()}


@pytest.mark.asyncio
async def test_last_three_posts_per_user_lateral():
    store = make_store([post(100, 1), post(99, 1), post(98, 1), post(200, 2), post(199, 2), post(198, 2)])

    result = await make_loader().load(store, {1, 2}, SPEC)

    assert ids(result) == {1: [100, 99, 98], 2: [200, 199, 198]}
    store.execute.assert_awaited_once()
    sql, params = store.execute.await_args.args
    assert "JOIN LATERAL" in sql
    assert params["limit"] == 3


@pytest.mark.asyncio
async def test_fallback_cuts_top_n_in_memory():
    rows = [post(pid, 1) for pid in range(100, 0, -1)] + [post(pid, 2) for pid in range(200, 100, -1)]
    store = make_store(rows, lateral=False)

    result = await make_loader().load(store, [1, 2], SPEC)

    assert ids(result) == {1: [100, 99, 98], 2: [200, 199, 198]}
    sql, params = store.execute.await_args.args
    assert "LATERAL" not in sql
    assert "limit" not in params


@pytest.mark.asyncio
async def test_force_fallback_ignores_lateral_support():
    store = make_store([post(100, 1)], lateral=True)

    await make_loader(force_fallback=True).load(store, [1], SPEC)

    sql, _ = store.execute.await_args.args
    assert "LATERAL" not in sql


@pytest.mark.asyncio
async def test_limit_zero_skips_round_trip():
    store = make_store()

    result = await make_loader().load(store, [1, 2, 3], SPEC.with_limit(0))

    assert result == {1: [], 2: [], 3: []}
    store.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_keys_skip_round_trip():
    store = make_store()

    assert await make_loader().load(store, set(), SPEC) == {}
    store.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_parent_without_children_gets_empty_bucket():
    store = make_store([])

    result = await make_loader().load(store, {7}, SPEC)

    assert result == {7: []}


@pytest.mark.asyncio
async def test_keys_in_request_order_and_collapsed():
    store = make_store([post(200, 2), post(100, 1)])

    result = await make_loader().load(store, [2, 1, 2, 3], SPEC)

    assert list(result) == [2, 1, 3]
    _, params = store.execute.await_args.args
    assert [v for k, v in params.items() if k.startswith("parent_keys_")] == [2, 1, 3]


@pytest.mark.asyncio
async def test_duplicate_rows_collapse():
    store = make_store([post(100, 1), post(100, 1), post(99, 1)])

    result = await make_loader().load(store, [1], SPEC)

    assert ids(result) == {1: [100, 99]}


@pytest.mark.asyncio
async def test_load_is_idempotent():
    rows = [post(100, 1), post(99, 1), post(200, 2)]
    loader = make_loader()

    first = await loader.load(make_store(rows), [1, 2], SPEC)
    second = await loader.load(make_store(rows), [1, 2], SPEC)

    assert first == second


@pytest.mark.asyncio
async def test_unknown_column_rejected_without_query():
    store = make_store()

    with pytest.raises(InvalidParameter):
        await make_loader().load(store, [1], GroupSpec(group_by="user_id", order_by="secret", limit=3))

    store.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_bad_limit_and_none_keys_rejected():
    store = make_store()
    loader = make_loader()

    with pytest.raises(InvalidParameter):
        await loader.load(store, [1], SPEC.with_limit(-1))
    with pytest.raises(InvalidParameter):
        await loader.load(store, None, SPEC)

    store.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_decode_error_aborts_batch():
    store = make_store([post(100, 1), {"id": 99, "title": "no fk"}])

    with pytest.raises(DecodeError):
        await make_loader().load(store, [1], SPEC)


@pytest.mark.asyncio
async def test_store_error_is_wrapped_with_original():
    store = make_store()
    orig = OperationalError("SELECT ...", {}, Exception("connection refused"))
    store.execute.side_effect = orig

    with pytest.raises(StoreError) as e:
        await make_loader().load(store, [1], SPEC)

    assert e.value.original is orig
    assert e.value.__cause__ is orig
    assert e.value.is_disconnect is True


@pytest.mark.asyncio
async def test_store_error_not_retried():
    store = make_store()
    store.execute.side_effect = ProgrammingError("SELECT ...", {}, Exception("syntax error"))

    with pytest.raises(StoreError) as e:
        await make_loader().load(store, [1], SPEC)

    assert e.value.is_disconnect is False
    assert store.execute.await_count == 1


@pytest.mark.asyncio
async def test_query_error_is_not_a_disconnect():
    store = make_store(lateral=False)
    store.execute.side_effect = OperationalError("SELECT ...", {}, Exception("no such table: posts"))

    with pytest.raises(StoreError) as e:
        await make_loader().load(store, [1], SPEC)

    assert e.value.is_disconnect is False


@pytest.mark.asyncio
async def test_cancelled_query_reports_cancelled():
    store = make_store()
    store.execute.side_effect = asyncio.CancelledError()

    with pytest.raises(Cancelled) as e:
        await make_loader().load(store, [1], SPEC)

    assert isinstance(e.value, asyncio.CancelledError)


@pytest.mark.asyncio
async def test_timeout_reports_cancelled():
    store = make_store()

    async def slow(sql, params):
        await asyncio.sleep(10)
        return []

    store.execute.side_effect = slow

    with pytest.raises(Cancelled):
        await make_loader().load(store, [1], SPEC, timeout=0.01)


@pytest.mark.asyncio
async def test_caller_timeout_surfaces_as_timeout_error():
    store = make_store()

    async def hang(sql, params):
        await asyncio.Event().wait()

    store.execute.side_effect = hang

    with pytest.raises(TimeoutError):
        async with asyncio.timeout(0.01):
            await make_loader().load(store, [1], SPEC)

    assert not asyncio.current_task().cancelling()


@pytest.mark.asyncio
async def test_task_cancel_attaches_nothing():
    started = asyncio.Event()
    store = make_store()

    async def hang(sql, params):
        started.set()
        await asyncio.Event().wait()

    store.execute.side_effect = hang
    parents = [SimpleNamespace(id=1), SimpleNamespace(id=2)]

    task = asyncio.create_task(make_loader().load_into(store, parents, "last_posts", SPEC))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert task.cancelled()
    assert not any(hasattr(p, "last_posts") for p in parents)


@pytest.mark.asyncio
async def test_load_into_attaches_slices():
    store = make_store([post(100, 1), post(99, 1)])
    parents = [SimpleNamespace(id=1, name="Coreen"), SimpleNamespace(id=2, name="Jody")]

    await make_loader().load_into(store, parents, "last_posts", SPEC)

    assert [p.id for p in parents[0].last_posts] == [100, 99]
    assert parents[1].last_posts == []


def test_attach_is_all_or_nothing():
    parents = [SimpleNamespace(id=1), SimpleNamespace(id=2)]
    results = {1: []}

    with pytest.raises(InvalidParameter):
        BatchLoader.attach(parents, "last_posts", results)

    assert not any(hasattr(p, "last_posts") for p in parents)


def test_attach_with_key_function_and_fresh_lists():
    parents = [{"user_id": 1}]
    holder = SimpleNamespace(user_id=1)
    results = {1: ["a", "b"]}

    BatchLoader.attach([holder], "last_posts", results, key=lambda p: p.user_id)

    assert holder.last_posts == ["a", "b"]
    assert holder.last_posts is not results[1]

    with pytest.raises(InvalidParameter):
        BatchLoader.attach(parents, "not an attr", results, key=lambda p: p["user_id"])


def test_from_settings_uses_loader_settings():
    settings = Settings(loader_max_limit=5, loader_force_fallback=True)
    loader = BatchLoader.from_settings(parent=USERS, child=POSTS, settings=settings)

    with pytest.raises(InvalidParameter):
        loader.builder.validate(SPEC.with_limit(6))
    loader.builder.validate(SPEC.with_limit(5))
