import asyncio

from autocracker.models import Game
from autocracker.search import SearchResolver

DELAY = 0.1


def make_lookup(calls, results=None, error=None):
    async def lookup(query):
        calls.append(query)
        if error is not None:
            raise error
        return results if results is not None else [Game("367520", "Hollow Knight")]

    return lookup


def test_edits_inside_window_issue_one_lookup_for_final_text():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query("hollow")
        await asyncio.sleep(DELAY * 0.5)
        resolver.update_query("hollow knight")
        await asyncio.sleep(DELAY * 3)
        resolver.close()
        return resolver

    resolver = asyncio.run(scenario())
    assert calls == ["hollow knight"]
    assert resolver.last_resolved_query == "hollow knight"
    assert resolver.results == [Game("367520", "Hollow Knight")]


def test_no_lookup_before_delay_elapses():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query("portal")
        await asyncio.sleep(DELAY * 0.3)
        pending = resolver.pending
        resolver.close()
        return pending

    assert asyncio.run(scenario()) is True
    assert calls == []


def test_unchanged_query_is_not_looked_up_again():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query("portal")
        await asyncio.sleep(DELAY * 2)
        resolver.update_query("portal ")
        await asyncio.sleep(DELAY * 2)
        resolver.close()

    asyncio.run(scenario())
    assert calls == ["portal"]


def test_empty_input_clears_results_immediately():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query("hollow")
        await asyncio.sleep(DELAY * 2)
        assert resolver.results
        resolver.update_query("   ")
        snapshot = (list(resolver.results), resolver.last_resolved_query, resolver.pending)
        resolver.close()
        return snapshot

    results, last_resolved, pending = asyncio.run(scenario())
    assert results == []
    assert last_resolved == ""
    assert pending is False


def test_numeric_query_bypasses_lookup():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query(" 1030300 ")
        await asyncio.sleep(DELAY * 2)
        resolver.close()
        return resolver

    resolver = asyncio.run(scenario())
    assert calls == []
    assert resolver.direct_candidate == "1030300"
    assert resolver.results == []


def test_text_after_numeric_drops_candidate():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query("1030300")
        resolver.update_query("1030300 silksong")
        await asyncio.sleep(DELAY * 2)
        resolver.close()
        return resolver

    resolver = asyncio.run(scenario())
    assert resolver.direct_candidate is None
    assert calls == ["1030300 silksong"]


def test_lookup_failure_gives_empty_results_and_no_lockout():
    calls = []
    outcomes = [RuntimeError("transport down"), None]

    async def lookup(query):
        calls.append(query)
        error = outcomes.pop(0)
        if error is not None:
            raise error
        return [Game("620", "Portal 2")]

    async def scenario():
        resolver = SearchResolver(lookup, delay=DELAY)
        resolver.results = [Game("1", "stale")]
        resolver.update_query("portal")
        await asyncio.sleep(DELAY * 2)
        after_failure = (list(resolver.results), resolver.in_flight)
        resolver.update_query("portal 2")
        await asyncio.sleep(DELAY * 2)
        resolver.close()
        return after_failure, resolver

    (results, in_flight), resolver = asyncio.run(scenario())
    assert results == []
    assert in_flight is False
    assert calls == ["portal", "portal 2"]
    assert resolver.results == [Game("620", "Portal 2")]


def test_failed_lookup_is_not_retried_automatically():
    calls = []

    async def scenario():
        resolver = SearchResolver(
            make_lookup(calls, error=RuntimeError("boom")), delay=DELAY
        )
        resolver.update_query("portal")
        await asyncio.sleep(DELAY * 5)
        resolver.close()

    asyncio.run(scenario())
    assert calls == ["portal"]


def test_only_one_lookup_in_flight():
    calls = []

    async def scenario():
        release = asyncio.Event()

        async def lookup(query):
            calls.append(query)
            await release.wait()
            return [Game("70", query)]

        resolver = SearchResolver(lookup, delay=DELAY * 0.5)
        resolver.update_query("alpha")
        await asyncio.sleep(DELAY)
        assert resolver.in_flight
        resolver.update_query("beta")
        await asyncio.sleep(DELAY)
        during = list(calls)
        release.set()
        await asyncio.sleep(DELAY * 2)
        resolver.close()
        return during, resolver

    during, resolver = asyncio.run(scenario())
    assert during == ["alpha"]
    assert calls == ["alpha", "beta"]
    assert resolver.last_resolved_query == "beta"


def test_close_cancels_pending_lookup():
    calls = []

    async def scenario():
        resolver = SearchResolver(make_lookup(calls), delay=DELAY)
        resolver.update_query("hades")
        resolver.close()
        await asyncio.sleep(DELAY * 2)
        return resolver

    resolver = asyncio.run(scenario())
    assert calls == []
    assert resolver.pending is False


def test_on_change_reports_results():
    seen = []

    async def scenario():
        resolver = SearchResolver(
            make_lookup([]), delay=DELAY, on_change=lambda r: seen.append(list(r.results))
        )
        resolver.update_query("hollow")
        await asyncio.sleep(DELAY * 2)
        resolver.close()

    asyncio.run(scenario())
    assert seen[-1] == [Game("367520", "Hollow Knight")]


def test_late_results_do_not_replace_direct_entry():
    async def scenario():
        release = asyncio.Event()

        async def lookup(query):
            await release.wait()
            return [Game("367520", "Hollow Knight")]

        resolver = SearchResolver(lookup, delay=DELAY * 0.5)
        resolver.update_query("hollow")
        await asyncio.sleep(DELAY)
        resolver.update_query("367520")
        release.set()
        await asyncio.sleep(DELAY)
        resolver.close()
        return resolver

    resolver = asyncio.run(scenario())
    assert resolver.direct_candidate == "367520"
    assert resolver.results == []
