from __future__ import annotations

import pytest

from chat_sync.services.directory import Directory
from chat_sync.services.history_loader import LOAD_FAILED, LOAD_MORE_FAILED, HistoryLoader
from tests.conftest import make_message, make_profile, raw_message


def _page(start: int, count: int, counterpart: str = "u2") -> list[dict]:
    return [
        raw_message(message_id=start + i, content=f"m{start + i}", at=start + i, sender=counterpart)
        for i in range(count)
    ]


@pytest.fixture
def directory(api, cache, store, clock) -> Directory:
    return Directory(api, cache, store, clock=clock)


@pytest.fixture
def loader(store, api, auth, directory, clock) -> HistoryLoader:
    return HistoryLoader(store, api, auth, directory, clock=clock, page_size=25)


@pytest.mark.asyncio
async def test_load_initial_replaces_visible_list(loader, store, api):
    api.history[("u2", 0)] = list(reversed(_page(100, 3)))
    store.activate(make_profile("u2"), [make_message(message_id="stale", sender="u3")])

    await loader.load_initial(make_profile("u2"))

    assert [m.id for m in store.messages] == ["100", "101", "102"]
    assert api.history_calls == [("u1", "u2", 0, 25)]
    state = store.state
    assert state.current_page == 0
    assert state.has_more is True
    assert state.loading_messages is False


@pytest.mark.asyncio
async def test_load_initial_retries_once_after_directory_reload(loader, store, api):
    api.history_failures = 1
    api.directory = [{"userId": "u2", "fullName": "Bob"}]
    api.history[("u2", 0)] = _page(1, 2)
    store.activate(make_profile("u2"))

    await loader.load_initial(make_profile("u2"))

    assert len(api.history_calls) == 2
    assert api.directory_calls == 1
    assert [m.id for m in store.messages] == ["1", "2"]
    assert store.state.error is None


@pytest.mark.asyncio
async def test_load_initial_final_failure_sets_error(loader, store, api):
    api.history_failures = 2
    store.activate(make_profile("u2"))

    assert await loader.load_initial(make_profile("u2")) == []

    assert store.messages == ()
    assert store.state.error == LOAD_FAILED
    assert store.state.loading_messages is False


@pytest.mark.asyncio
async def test_load_initial_discards_page_for_switched_conversation(loader, store, api):
    api.history[("u2", 0)] = _page(1, 2)
    store.activate(make_profile("u3"), [make_message(message_id="keep", sender="u3")])

    await loader.load_initial(make_profile("u2"))

    assert [m.id for m in store.messages] == ["keep"]


@pytest.mark.asyncio
async def test_load_more_prepends_and_advances_cursor(loader, store, api):
    api.history[("u2", 0)] = _page(100, 2)
    api.history[("u2", 1)] = _page(50, 2)
    store.activate(make_profile("u2"))
    await loader.load_initial(make_profile("u2"))

    added = await loader.load_more(make_profile("u2"))

    assert added == 2
    assert [m.id for m in store.messages] == ["50", "51", "100", "101"]
    assert store.state.current_page == 1
    assert store.state.loading_more is False


@pytest.mark.asyncio
async def test_empty_page_marks_exhausted_and_stops_fetching(loader, store, api):
    store.activate(make_profile("u2"))

    assert await loader.load_more(make_profile("u2")) == 0
    assert store.state.has_more is False

    calls = len(api.history_calls)
    await loader.load_more(make_profile("u2"))
    assert len(api.history_calls) == calls


@pytest.mark.asyncio
async def test_load_more_guards(loader, store, api):
    await loader.load_more(make_profile("u2"))
    assert api.history_calls == []

    store.activate(make_profile("u2"))
    store.set_loading(loading_more=True)
    await loader.load_more(make_profile("u2"))
    assert api.history_calls == []

    store.set_loading(loading_more=False)
    await loader.load_more(make_profile("u3"))
    assert api.history_calls == []


@pytest.mark.asyncio
async def test_load_more_failure_keeps_visible_state(loader, store, api):
    api.history[("u2", 0)] = _page(100, 2)
    store.activate(make_profile("u2"))
    await loader.load_initial(make_profile("u2"))
    api.history_failures = 1

    assert await loader.load_more(make_profile("u2")) == 0

    assert [m.id for m in store.messages] == ["100", "101"]
    assert store.state.error == LOAD_MORE_FAILED
    assert store.state.loading_more is False
    assert store.state.current_page == 0
