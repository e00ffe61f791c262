import json

import httpx
import pytest

from delegation_sync.core.errors import SourceError
from delegation_sync.services.koios import KoiosClient, KoiosConfig


def _config(**overrides):
    values = {
        "base_url": "https://koios.test/api/v1",
        "api_key": None,
        "timeout_seconds": 5.0,
        "max_retries": 2,
        "retry_base_delay_seconds": 1.0,
        "retry_max_delay_seconds": 1.5,
    }
    values.update(overrides)
    return KoiosConfig(**values)


class _Recorder:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses, **config):
    recorder = _Recorder(responses)
    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    client = KoiosClient(_config(**config), transport=httpx.MockTransport(recorder), sleep=_sleep)
    return client, recorder, delays


@pytest.mark.asyncio
async def test_get_tip_returns_first_row():
    client, recorder, _ = _client([httpx.Response(200, json=[{"epoch_no": 512, "abs_slot": 1}])])

    tip = await client.get_tip()

    assert tip["epoch_no"] == 512
    assert recorder.requests[0].url.path == "/api/v1/tip"
    assert "authorization" not in recorder.requests[0].headers
    await client.close()


@pytest.mark.asyncio
async def test_empty_tip_is_an_error():
    client, _, _ = _client([httpx.Response(200, json=[])])

    with pytest.raises(SourceError, match="no rows"):
        await client.get_tip()


@pytest.mark.asyncio
async def test_api_key_is_sent_as_bearer_token():
    client, recorder, _ = _client([httpx.Response(200, json=[])], api_key="secret")

    await client.list_dreps(limit=10, offset=0)

    assert recorder.requests[0].headers["authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_delegators_request_carries_paging_params():
    client, recorder, _ = _client([httpx.Response(200, json=[{"stake_address": "stake1"}])])

    rows = await client.list_drep_delegators("drep1abc", limit=1000, offset=2000)

    request = recorder.requests[0]
    assert rows == [{"stake_address": "stake1"}]
    assert request.url.path == "/api/v1/drep_delegators"
    assert request.url.params["_drep_id"] == "drep1abc"
    assert request.url.params["limit"] == "1000"
    assert request.url.params["offset"] == "2000"


@pytest.mark.asyncio
async def test_account_history_posts_addresses_with_paging_in_query():
    client, recorder, _ = _client([httpx.Response(200, json=[])])

    await client.get_account_update_history(["stake_a", "stake_b"], limit=500, offset=500)

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v1/account_update_history"
    assert request.url.params["offset"] == "500"
    assert json.loads(request.content) == {"_stake_addresses": ["stake_a", "stake_b"]}


@pytest.mark.asyncio
async def test_tx_info_requests_certificates_only():
    client, recorder, _ = _client([httpx.Response(200, json=[{"tx_hash": "tx1"}])])

    await client.get_tx_info(["tx1"])

    body = json.loads(recorder.requests[0].content)
    assert body["_tx_hashes"] == ["tx1"]
    assert body["_certs"] is True
    assert not any(value for key, value in body.items() if key not in ("_tx_hashes", "_certs"))


@pytest.mark.asyncio
async def test_empty_batches_skip_the_network():
    client, recorder, _ = _client([])

    assert await client.get_drep_info([]) == []
    assert await client.get_tx_info([]) == []
    assert await client.get_account_update_history([], limit=10, offset=0) == []
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_server_errors_are_retried_with_backoff():
    client, recorder, delays = _client(
        [
            httpx.Response(503),
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json=[{"drep_id": "drep1"}]),
        ]
    )

    rows = await client.get_drep_info(["drep1"])

    assert rows == [{"drep_id": "drep1"}]
    assert len(recorder.requests) == 3
    assert delays == [1.0, 1.5]
    metrics = client.get_metrics()
    assert metrics["retry_count"] == 2
    assert metrics["error_count"] == 2
    assert metrics["success_count"] == 1


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    client, recorder, delays = _client([httpx.Response(404)])

    with pytest.raises(SourceError) as excinfo:
        await client.list_accounts(limit=10, offset=0)

    assert excinfo.value.status_code == 404
    assert len(recorder.requests) == 1
    assert delays == []


@pytest.mark.asyncio
async def test_retries_are_bounded():
    client, recorder, _ = _client([httpx.Response(500)] * 3)

    with pytest.raises(SourceError, match="after 2 retries") as excinfo:
        await client.list_dreps(limit=10, offset=0)

    assert excinfo.value.status_code == 500
    assert len(recorder.requests) == 3


@pytest.mark.asyncio
async def test_invalid_json_is_a_source_error():
    client, _, _ = _client([httpx.Response(200, content=b"<html>")] * 3)

    with pytest.raises(SourceError):
        await client.list_dreps(limit=10, offset=0)
