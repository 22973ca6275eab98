import asyncio

from autocracker.errors import CatalogError
from autocracker.models import ProtectionStatus
from autocracker.protection import (
    CLEAR_MESSAGE,
    PROTECTED_MESSAGE,
    ProtectionProbe,
    has_protection_marker,
)


async def settle(seconds=0.05):
    await asyncio.sleep(seconds)


def scripted_probe(calls, responses):
    """Each call pops the next response; exceptions are raised."""

    async def probe(catalog_id):
        calls.append(catalog_id)
        response = responses.pop(0) if responses else CatalogError("no scripted response")
        if isinstance(response, Exception):
            raise response
        return response

    return probe


def test_marker_detection_is_case_insensitive():
    assert has_protection_marker("Protected by DENUVO Anti-Tamper")
    assert not has_protection_marker("No third-party DRM notice")
    assert not has_protection_marker(None)


def test_marker_in_response_means_protected():
    calls = []

    async def scenario():
        probe = ProtectionProbe(
            scripted_probe(calls, ["Protected by Denuvo Anti-Tamper"])
        )
        probe.set_catalog_id("1030300")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert probe.status is ProtectionStatus.PROTECTED
    assert probe.state.message == PROTECTED_MESSAGE
    assert probe.state.attempts == 1
    assert calls == ["1030300"]


def test_response_without_marker_means_clear():
    async def scenario():
        probe = ProtectionProbe(scripted_probe([], ["No third-party DRM notice"]))
        probe.set_catalog_id("620")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert probe.status is ProtectionStatus.CLEAR
    assert probe.state.message == CLEAR_MESSAGE


def test_three_failures_exhaust_and_stop():
    calls = []

    async def scenario():
        probe = ProtectionProbe(
            scripted_probe(calls, [CatalogError("a"), CatalogError("b"), CatalogError("c")])
        )
        probe.set_catalog_id("1030300")
        await settle(0.2)
        return probe

    probe = asyncio.run(scenario())
    assert probe.status is ProtectionStatus.EXHAUSTED
    assert probe.state.message == "check failed, attempt 3 of 3"
    assert probe.state.attempts == 3
    assert len(calls) == 3


def test_failure_message_counts_attempts():
    messages = []

    async def scenario():
        probe = ProtectionProbe(
            scripted_probe([], [CatalogError("a"), "No notice"]),
            on_change=lambda p: messages.append(p.state.message),
        )
        probe.set_catalog_id("70")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert "check failed, attempt 1 of 3" in messages
    assert probe.status is ProtectionStatus.CLEAR
    assert probe.state.attempts == 2


def test_terminal_state_is_not_probed_again_for_same_id():
    calls = []

    async def scenario():
        probe = ProtectionProbe(scripted_probe(calls, ["clean", "clean"]))
        probe.set_catalog_id("620")
        await settle()
        probe.set_catalog_id("620")
        probe.set_catalog_id(" 620 ")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert calls == ["620"]
    assert probe.status is ProtectionStatus.CLEAR


def test_changing_id_resets_attempts():
    calls = []

    async def scenario():
        probe = ProtectionProbe(
            scripted_probe(
                calls, [CatalogError("a"), CatalogError("b"), CatalogError("c"), "clean"]
            )
        )
        probe.set_catalog_id("1")
        await settle(0.2)
        assert probe.status is ProtectionStatus.EXHAUSTED
        probe.set_catalog_id("2")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert calls == ["1", "1", "1", "2"]
    assert probe.status is ProtectionStatus.CLEAR
    assert probe.state.attempts == 1


def test_clearing_id_returns_to_idle():
    async def scenario():
        probe = ProtectionProbe(scripted_probe([], ["Denuvo"]))
        probe.set_catalog_id("1030300")
        await settle()
        probe.set_catalog_id("")
        return probe

    probe = asyncio.run(scenario())
    assert probe.status is ProtectionStatus.IDLE
    assert probe.state.attempts == 0
    assert probe.state.message == ""


def test_is_checking_while_probe_outstanding():
    async def scenario():
        release = asyncio.Event()

        async def probe_call(catalog_id):
            await release.wait()
            return "clean"

        probe = ProtectionProbe(probe_call)
        probe.set_catalog_id("620")
        await settle()
        checking = probe.is_checking
        release.set()
        await settle()
        return checking, probe

    checking, probe = asyncio.run(scenario())
    assert checking is True
    assert probe.is_checking is False


def test_result_for_previous_id_is_discarded():
    async def scenario():
        release = asyncio.Event()

        async def probe_call(catalog_id):
            if catalog_id == "1":
                await release.wait()
                return "Denuvo Anti-Tamper"
            return "clean"

        probe = ProtectionProbe(probe_call)
        probe.set_catalog_id("1")
        await settle()
        probe.set_catalog_id("2")
        release.set()
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert probe.catalog_id == "2"
    assert probe.status is ProtectionStatus.CLEAR


def test_fallback_notice_is_secondary_signal():
    fallback_calls = []

    async def fallback(catalog_id):
        fallback_calls.append(catalog_id)
        return "Denuvo Anti-tamper"

    async def scenario():
        probe = ProtectionProbe(scripted_probe([], ["No third-party DRM notice"]), fallback=fallback)
        probe.set_catalog_id("1030300")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert fallback_calls == ["1030300"]
    assert probe.status is ProtectionStatus.PROTECTED


def test_fallback_skipped_when_primary_has_marker():
    fallback_calls = []

    async def fallback(catalog_id):
        fallback_calls.append(catalog_id)
        return None

    async def scenario():
        probe = ProtectionProbe(scripted_probe([], ["Denuvo"]), fallback=fallback)
        probe.set_catalog_id("1030300")
        await settle()
        return probe

    probe = asyncio.run(scenario())
    assert fallback_calls == []
    assert probe.status is ProtectionStatus.PROTECTED


def test_fallback_failure_counts_as_failed_attempt():
    async def fallback(catalog_id):
        raise CatalogError("appdetails down")

    async def scenario():
        probe = ProtectionProbe(scripted_probe([], ["clean"] * 3), fallback=fallback)
        probe.set_catalog_id("620")
        await settle(0.2)
        return probe

    probe = asyncio.run(scenario())
    assert probe.status is ProtectionStatus.EXHAUSTED
