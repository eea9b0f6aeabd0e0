import asyncio

from streamflow.pipeline import CancellationFault, CancelToken, DeadlineExceeded


def test_cancel_once():
    token = CancelToken()
    reasons = []
    token.add_callback(reasons.append)
    assert not token.cancelled

    assert token.cancel("shutdown") is True
    assert token.cancel("again") is False
    assert token.cancelled
    assert isinstance(token.reason, CancellationFault)
    assert str(token.reason) == "shutdown"
    assert reasons == [token.reason]


def test_exception_reason_is_chained():
    token = CancelToken()
    cause = KeyboardInterrupt()
    token.cancel(cause)
    assert token.reason.__cause__ is cause

    fault = CancellationFault("explicit")
    other = CancelToken()
    other.cancel(fault)
    assert other.reason is fault


def test_callback_after_cancel_runs_immediately():
    token = CancelToken()
    token.cancel()
    seen = []
    token.add_callback(seen.append)
    assert seen == [token.reason]


def test_removed_callback_is_not_called():
    token = CancelToken()
    seen = []
    remove = token.add_callback(seen.append)
    remove()
    token.cancel()
    assert seen == []


def test_linked_token():
    parent = CancelToken()
    child = CancelToken.linked(parent)
    child.cancel("child only")
    assert not parent.cancelled

    parent2 = CancelToken()
    child2 = CancelToken.linked(parent2)
    parent2.cancel("parent")
    assert child2.cancelled
    assert child2.reason is parent2.reason


def test_wait_and_deadline():
    async def main():
        token = CancelToken()
        token.cancel_after(0.01)
        reason = await asyncio.wait_for(token.wait(), 1)
        assert isinstance(reason, DeadlineExceeded)
        assert "0.01s" in str(reason)

    asyncio.run(main())


def test_deadline_timer_can_be_cancelled():
    async def main():
        token = CancelToken()
        timer = token.cancel_after(0.01)
        timer.cancel()
        await asyncio.sleep(0.03)
        assert not token.cancelled

    asyncio.run(main())
