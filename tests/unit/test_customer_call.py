"""Unit tests for the customer call state machine."""
import asyncio

import pytest

from videodesk.core.exceptions import (
    CallStateError,
    ConnectError,
    InputValidationError,
    MediaPermissionError,
    MediaPublishError,
)
from videodesk.services.call.states import CallState, PublishState
from videodesk.services.signaling.channel import SignalingChannel
from videodesk.services.signaling.signals import Role, Signal, SignalType


@pytest.fixture
async def raw_agent(session_provider, agent_media):
    """Join a bare agent channel to a session, bypassing the agent machine."""
    async def _join(session_id):
        session = agent_media.init_session("loopback", session_id)
        await session.connect(await session_provider.generate_token(session_id))
        channel = SignalingChannel(Role.AGENT)
        channel.attach(session)
        return channel
    return _join


class TestCustomerRequest:
    """Test Idle -> Requesting -> WaitingForAgent."""

    @pytest.mark.asyncio
    async def test_request_call_waits_for_agent(self, make_customer, call_queue, customer_devices):
        """Test a successful request joins the session and arms the wait timer."""
        customer = make_customer()

        credentials = await customer.request_call("Alice")

        assert customer.state == CallState.WAITING_FOR_AGENT
        assert customer.session.session_id == credentials.session_id
        assert customer.media_session.connected
        assert customer._wait_task is not None
        assert [r.id for r in call_queue.list_pending()] == [credentials.request_id]
        # Permission probe released its hardware
        assert customer_devices.in_use == 0

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, make_customer, call_queue):
        """Test a blank name is rejected before anything else happens."""
        customer = make_customer()

        with pytest.raises(InputValidationError):
            await customer.request_call("   ")

        assert customer.state == CallState.IDLE
        assert customer.session.last_error == "Please enter your name."
        assert len(call_queue) == 0

    @pytest.mark.asyncio
    async def test_permission_denied_is_retryable(self, make_customer, customer_devices, call_queue):
        """Test a denied microphone probe fails the call, and a retry can succeed."""
        customer = make_customer()
        customer_devices.deny = True

        with pytest.raises(MediaPermissionError):
            await customer.request_call("Alice")

        assert customer.state == CallState.FAILED
        assert customer.session.failure.retryable is True
        assert len(call_queue) == 0

        customer_devices.deny = False
        await customer.request_call("Alice")
        assert customer.state == CallState.WAITING_FOR_AGENT

    @pytest.mark.asyncio
    async def test_connect_failure_reports_error(self, make_customer, customer_media, call_queue):
        """Test a failed session join removes the queued request."""
        customer = make_customer()
        customer_media.fail_connect = True

        with pytest.raises(ConnectError):
            await customer.request_call("Alice")

        assert customer.state == CallState.FAILED
        assert customer.session.last_error == "Could not connect to session."
        assert len(call_queue) == 0
        assert customer.media_session is None

    @pytest.mark.asyncio
    async def test_second_request_while_waiting(self, make_customer):
        """Test only one request runs at a time."""
        customer = make_customer()
        await customer.request_call("Alice")

        with pytest.raises(CallStateError):
            await customer.request_call("Alice")


class TestCustomerWaitTimeout:
    """Test the no-agent path."""

    @pytest.mark.asyncio
    async def test_timeout_fails_and_cleans_up(self, make_customer, call_queue, customer_devices, hub):
        """Test the wait timer fails the call, removes the request and leaves the session."""
        customer = make_customer(wait_timeout=0.05)
        await customer.request_call("Alice")
        timer = customer._wait_task

        await timer
        await hub.settle()

        assert customer.state == CallState.FAILED
        assert customer.session.failure.reason == "no agent"
        assert customer.session.failure.retryable is True
        assert len(call_queue) == 0
        assert customer.media_session is None
        assert customer_devices.in_use == 0

    @pytest.mark.asyncio
    async def test_call_accepted_cancels_timer(self, make_customer, raw_agent, hub):
        """Test leaving WaitingForAgent disarms the timer."""
        customer = make_customer(wait_timeout=0.2)
        credentials = await customer.request_call("Alice")
        timer = customer._wait_task
        agent = await raw_agent(credentials.session_id)

        await agent.send(SignalType.CALL_ACCEPTED, "Agent accepted the call")
        await hub.settle()
        await asyncio.sleep(0)

        assert customer.state == CallState.ACTIVE
        assert timer.cancelled()
        assert customer._wait_task is None

    @pytest.mark.asyncio
    async def test_close_while_waiting_removes_request(self, make_customer, call_queue):
        """Test tearing down from WaitingForAgent reports the request as errored."""
        customer = make_customer()
        await customer.request_call("Alice")

        await customer.close()
        await customer.close()

        assert customer.state == CallState.ENDED
        assert len(call_queue) == 0
        assert customer.media_session is None


class TestCustomerAccept:
    """Test WaitingForAgent -> Connecting -> Active."""

    @pytest.mark.asyncio
    async def test_duplicate_call_accepted_publishes_once(self, make_customer, raw_agent, customer_media, hub):
        """Test two callAccepted signals lead to exactly one publisher."""
        customer = make_customer()
        credentials = await customer.request_call("Alice")
        agent = await raw_agent(credentials.session_id)

        await agent.send(SignalType.CALL_ACCEPTED, "first")
        await agent.send(SignalType.CALL_ACCEPTED, "second")
        await hub.settle()

        assert customer.state == CallState.ACTIVE
        assert customer.session.publish_state == PublishState.PUBLISHED
        assert len(customer_media.publishers) == 1
        assert customer.session.has_local_video is True

    @pytest.mark.asyncio
    async def test_call_accepted_after_active_ignored(self, make_customer, raw_agent, customer_media, hub):
        """Test a late callAccepted does not republish."""
        customer = make_customer()
        credentials = await customer.request_call("Alice")
        agent = await raw_agent(credentials.session_id)
        await agent.send(SignalType.CALL_ACCEPTED, "first")
        await hub.settle()

        await agent.send(SignalType.CALL_ACCEPTED, "late")
        await hub.settle()

        assert customer.state == CallState.ACTIVE
        assert len(customer_media.publishers) == 1

    @pytest.mark.asyncio
    async def test_publish_failure_then_retry(self, make_customer, raw_agent, customer_media, hub):
        """Test a failed publish stays Connecting, signals media-failed, and can be retried."""
        customer = make_customer()
        credentials = await customer.request_call("Alice")
        agent = await raw_agent(credentials.session_id)
        failures = []

        async def on_media_failed(signal):
            failures.append(signal.payload)

        agent.register(SignalType.MEDIA_FAILED, on_media_failed)
        customer_media.publish_failures = 1

        await agent.send(SignalType.CALL_ACCEPTED, "go")
        await hub.settle()

        assert customer.state == CallState.CONNECTING
        assert customer.session.publish_state == PublishState.FAILED
        assert customer.session.last_error == "Publishing to session failed."
        assert failures == ["Publishing to session failed."]

        await customer.retry_publish()
        assert customer.state == CallState.ACTIVE
        assert customer.session.publish_state == PublishState.PUBLISHED

    @pytest.mark.asyncio
    async def test_retry_publish_surfaces_failure(self, make_customer, raw_agent, customer_devices, hub):
        """Test a retry that fails again raises MediaPublishError."""
        customer = make_customer()
        credentials = await customer.request_call("Alice")
        agent = await raw_agent(credentials.session_id)
        customer_devices.deny = True
        await agent.send(SignalType.CALL_ACCEPTED, "go")
        await hub.settle()

        with pytest.raises(MediaPublishError):
            await customer.retry_publish()
        assert customer.state == CallState.CONNECTING

    @pytest.mark.asyncio
    async def test_retry_publish_outside_failure(self, make_customer):
        """Test retry_publish is refused when nothing failed."""
        customer = make_customer()

        with pytest.raises(CallStateError):
            await customer.retry_publish()


class TestCustomerEnd:
    """Test ending from the customer's point of view."""

    @pytest.mark.asyncio
    async def test_end_call_signal_ends(self, make_customer, raw_agent, customer_devices, hub):
        """Test endCall from the agent ends the call and releases the camera."""
        customer = make_customer()
        credentials = await customer.request_call("Alice")
        agent = await raw_agent(credentials.session_id)
        await agent.send(SignalType.CALL_ACCEPTED, "go")
        await hub.settle()
        assert customer_devices.in_use == 1

        await agent.send(SignalType.END_CALL, "Agent ended the call")
        await hub.settle()

        assert customer.state == CallState.ENDED
        assert customer.publisher is None
        assert customer_devices.in_use == 0

    @pytest.mark.asyncio
    async def test_signals_after_end_ignored(self, make_customer, customer_media):
        """Test no signal can revive an ended call."""
        customer = make_customer()
        await customer.request_call("Alice")
        await customer.end_call()

        await customer._on_call_accepted(Signal(type=SignalType.CALL_ACCEPTED, sender_role=Role.AGENT))
        await customer._on_end_call(Signal(type=SignalType.END_CALL, sender_role=Role.AGENT))

        assert customer.state == CallState.ENDED
        assert customer_media.publishers == []
