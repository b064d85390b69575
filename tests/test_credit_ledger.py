import asyncio

import pytest

from clipchain.models.credits import ChargeDetails, VideoRecord
from clipchain.utils.exceptions import InsufficientCreditsError, ReservationError


def details(**extra):
    return ChargeDetails(action_type="video_generation", description="test", model_used="veo", **extra)


async def test_unknown_user_has_zero_balance(ledger):
    balance = await ledger.get_balance("nobody")
    assert balance.remaining_credits == 0


async def test_reserve_fails_without_changing_balance(ledger):
    await ledger.add_credits("u", 50)

    with pytest.raises(InsufficientCreditsError):
        await ledger.reserve("u", 120)

    assert (await ledger.get_balance("u")).remaining_credits == 50
    assert ledger.held_credits("u") == 0


async def test_holds_reduce_spendable_balance(ledger):
    await ledger.add_credits("u", 150)

    first = await ledger.reserve("u", 100)
    with pytest.raises(InsufficientCreditsError) as exc_info:
        await ledger.reserve("u", 100)

    assert exc_info.value.details["remaining"] == 50
    await ledger.release(first)
    await ledger.reserve("u", 100)


async def test_commit_writes_balance_and_history_together(ledger):
    await ledger.add_credits("u", 500)
    token = await ledger.reserve("u", 120)
    video = VideoRecord(user_id="u", prompt="p", video_url="/output/v.mp4", model="veo", duration=8)

    remaining = await ledger.commit(token, details(duration=8.0, video=video))

    assert remaining == 380
    balance = await ledger.get_balance("u")
    assert (balance.total_credits, balance.used_credits, balance.remaining_credits) == (500, 120, 380)
    [transaction] = await ledger.list_transactions("u")
    assert transaction.credits_used == 120
    [stored_video] = await ledger.list_videos("u")
    assert stored_video.credits_used == 120
    assert token.committed and ledger.held_credits("u") == 0


async def test_commit_twice_is_rejected(ledger):
    await ledger.add_credits("u", 500)
    token = await ledger.reserve("u", 120)
    await ledger.commit(token, details())

    with pytest.raises(ReservationError):
        await ledger.commit(token, details())
    assert len(await ledger.list_transactions("u")) == 1


async def test_release_after_commit_is_a_no_op(ledger):
    await ledger.add_credits("u", 500)
    token = await ledger.reserve("u", 120)
    await ledger.commit(token, details())

    assert await ledger.release(token) is False
    assert (await ledger.get_balance("u")).remaining_credits == 380


async def test_released_token_cannot_be_committed(ledger):
    await ledger.add_credits("u", 500)
    token = await ledger.reserve("u", 120)
    assert await ledger.release(token) is True

    with pytest.raises(ReservationError):
        await ledger.commit(token, details())


async def test_gate_releases_on_error(ledger):
    await ledger.add_credits("u", 500)

    with pytest.raises(RuntimeError):
        async with ledger.gate("u", 200):
            assert ledger.held_credits("u") == 200
            raise RuntimeError("clip failed")

    assert ledger.held_credits("u") == 0
    assert (await ledger.get_balance("u")).remaining_credits == 500
    assert await ledger.list_transactions("u") == []


async def test_concurrent_gates_cannot_double_spend(ledger):
    await ledger.add_credits("u", 150)
    results = []

    async def spend():
        try:
            async with ledger.gate("u", 100) as token:
                await asyncio.sleep(0)
                await ledger.commit(token, details())
                results.append("charged")
        except InsufficientCreditsError:
            results.append("rejected")

    await asyncio.gather(spend(), spend())

    assert sorted(results) == ["charged", "rejected"]
    assert (await ledger.get_balance("u")).remaining_credits == 50
