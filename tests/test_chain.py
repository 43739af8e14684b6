"""Tests for typed chain queries and node readiness."""

from unittest.mock import Mock
import pytest
import requests
from bitcoinalerts.chain import (
    BlockchainInfo,
    ChainClient,
    NetworkInfo,
    check_node,
    wait_until_synced,
)
from bitcoinalerts.errors import FatalError
from bitcoinalerts.rpc import RPCClient, RPCError


def create_mock_rpc_client(responses):
    rpc = Mock(spec=RPCClient)
    rpc.call.side_effect = lambda method, *params: responses[method]
    return rpc


def test_get_mining_info():
    rpc = create_mock_rpc_client({
        "getmininginfo": {"blocks": 840000, "difficulty": 86388558925171.02, "networkhashps": 6.1e20}
    })
    info = ChainClient(rpc).get_mining_info()
    assert info.difficulty == 86388558925171.02
    assert info.network_hash_ps == 6.1e20


def test_get_tx_out_set_info_params():
    rpc = Mock(spec=RPCClient)
    rpc.call.return_value = {"height": 840000, "total_amount": 19687500.0, "txouts": 1}
    client = ChainClient(rpc)

    info = client.get_tx_out_set_info()
    rpc.call.assert_called_with("gettxoutsetinfo", "none")
    assert info.height == 840000
    assert info.total_amount == 19687500.0

    client.get_tx_out_set_info(840000)
    rpc.call.assert_called_with("gettxoutsetinfo", "none", 840000)


def test_get_blockchain_and_network_info():
    rpc = create_mock_rpc_client({
        "getblockchaininfo": {"chain": "main", "blocks": 840000, "headers": 840002, "initialblockdownload": False},
        "getnetworkinfo": {"version": 270000, "networkactive": True},
    })
    client = ChainClient(rpc)
    assert client.get_blockchain_info() == BlockchainInfo("main", 840000, 840002, False)
    assert client.get_network_info() == NetworkInfo(270000, True)


def test_check_node_ok():
    left = check_node(BlockchainInfo("main", 840000, 840002, False), NetworkInfo(270000, True), "bitcoin")
    assert left == 2


@pytest.mark.parametrize("blockchain_info,network_info,network", [
    (BlockchainInfo("main", 1, 1, False), NetworkInfo(210000, True), "bitcoin"),
    (BlockchainInfo("main", 1, 1, False), NetworkInfo(270000, False), "bitcoin"),
    (BlockchainInfo("test", 1, 1, False), NetworkInfo(270000, True), "bitcoin"),
    (BlockchainInfo("main", 1, 1, False), NetworkInfo(270000, True), "regtest"),
])
def test_check_node_fatal(blockchain_info, network_info, network):
    with pytest.raises(FatalError):
        check_node(blockchain_info, network_info, network)


def test_wait_until_synced_loops():
    chain_client = Mock(spec=ChainClient)
    chain_client.get_blockchain_info.side_effect = [
        requests.ConnectionError("refused"),
        BlockchainInfo("signet", 100, 200, True),
        BlockchainInfo("signet", 200, 200, False),
    ]
    chain_client.get_network_info.return_value = NetworkInfo(270000, True)
    sleeps = []

    wait_until_synced(chain_client, "signet", rpc_retry_secs=60, sync_wait_secs=120, sleep_fn=sleeps.append)

    assert sleeps == [60, 120]


def test_wait_until_synced_wrong_network():
    chain_client = Mock(spec=ChainClient)
    chain_client.get_blockchain_info.return_value = BlockchainInfo("main", 1, 1, False)
    chain_client.get_network_info.return_value = NetworkInfo(270000, True)

    with pytest.raises(FatalError):
        wait_until_synced(chain_client, "testnet", sleep_fn=lambda secs: None)


def test_rpc_error_message():
    error = RPCError("getblock", {"code": -5, "message": "Block not found"})
    assert error.code == -5
    assert str(error) == "getblock: Block not found"


def test_rpc_client_call():
    client = RPCClient("http://127.0.0.1:8332", "user", "pass", timeout=5)
    client.session = Mock()
    client.session.post.return_value.status_code = 200
    client.session.post.return_value.json.return_value = {"result": 840000, "error": None, "id": "bitcoin-alerts"}

    assert client.call("getblockcount") == 840000
    kwargs = client.session.post.call_args[1]
    assert kwargs["timeout"] == 5


def test_rpc_client_error_response():
    client = RPCClient("http://127.0.0.1:8332", "user", "pass")
    client.session = Mock()
    client.session.post.return_value.status_code = 500
    client.session.post.return_value.headers = {"content-type": "application/json"}
    client.session.post.return_value.json.return_value = {
        "result": None,
        "error": {"code": -8, "message": "Block height out of range"},
        "id": "bitcoin-alerts",
    }

    with pytest.raises(RPCError) as excinfo:
        client.call("getblockhash", 99999999)
    assert excinfo.value.code == -8
