"""Transport tests."""

import pytest

from tenantflow.contracts import ExecutionRequest
from tenantflow.transports import get_transport
from tenantflow.transports.inmemory import InMemoryTransport
from tenantflow.transports.redis import RedisTransport


def _request(execution_id="exec-1"):
    return ExecutionRequest(execution_id=execution_id, flow_id="flow-1", tenant_id="t1")


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()

    await transport.publish("executions", _request())

    message_received = False
    async for raw_msg, received in transport.subscribe("executions"):
        assert received.execution_id == "exec-1"
        assert received.tenant_id == "t1"
        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received
    assert transport.pending("executions") == 0


@pytest.mark.asyncio
async def test_inmemory_transport_lifespan_stops_idle_subscription():
    transport = InMemoryTransport(poll_interval=0.01)
    received = [msg async for _, msg in transport.subscribe("executions", lifespan=0.05)]
    assert received == []


@pytest.mark.asyncio
async def test_inmemory_transport_nack_requeues():
    transport = InMemoryTransport()
    await transport.publish("executions", _request("first"))
    await transport.publish("executions", _request("second"))

    async for raw_msg, _ in transport.subscribe("executions"):
        await transport.nack(raw_msg)
        break

    ids = []
    async for raw_msg, msg in transport.subscribe("executions", lifespan=0.3):
        ids.append(msg.execution_id)
        await transport.ack(raw_msg)
        if len(ids) == 2:
            break
    assert ids == ["first", "second"]


def test_execution_request_json_round_trip():
    request = _request()
    restored = ExecutionRequest.from_json(request.to_json())
    assert restored == request


def test_redis_transport_defaults():
    transport = RedisTransport()
    assert transport.host == "localhost"
    assert transport.port == 6379
    assert transport.queue_name("executions") == "tenantflow:executions"


def test_get_transport_backend_selection(tmp_path, monkeypatch):
    monkeypatch.setenv("TENANTFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("TENANTFLOW_TRANSPORT", raising=False)

    assert isinstance(get_transport(), InMemoryTransport)
    assert isinstance(get_transport("redis"), RedisTransport)

    monkeypatch.setenv("TENANTFLOW_TRANSPORT", "redis")
    assert isinstance(get_transport(), RedisTransport)

    with pytest.raises(ValueError, match="expected one of inmemory, redis"):
        get_transport("kafka")


def test_get_transport_applies_transport_settings(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: inmemory
  poll_interval: 0.2
  redis:
    queue_prefix: acme-flows
"""
    )
    monkeypatch.setenv("TENANTFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("TENANTFLOW_TRANSPORT", raising=False)

    inmemory = get_transport()
    assert isinstance(inmemory, InMemoryTransport)
    assert inmemory._poll_interval == 0.2

    redis_transport = get_transport("REDIS")
    assert isinstance(redis_transport, RedisTransport)
    assert redis_transport.queue_name("flow-executions") == "acme-flows:flow-executions"
