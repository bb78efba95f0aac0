"""JSON-RPC clients for the `eth` and `engine` namespaces of the client under test."""

import time
from itertools import count
from typing import Any, ClassVar, Dict, List, Literal, Union

import requests
from jwt import encode

from engine_test_base_types import Address, Bytes, Hash, to_json
from engine_test_types import ExecutionPayload, Transaction

from .types import (
    BlockResponse,
    ForkchoiceState,
    ForkchoiceUpdateResponse,
    GetPayloadResponse,
    JSONRPCError,
    PayloadAttributes,
    PayloadStatus,
    TransactionByHashResponse,
)

BlockNumberType = Union[int, Literal["latest", "earliest", "pending"]]

# Secret shared with every client started by hive.
HIVE_JWT_SECRET = b"secretsecretsecretsecretsecretse"


class SendTransactionExceptionError(Exception):
    """Represent an exception that is raised when a transaction is rejected by the client."""

    tx: Transaction | None = None
    tx_rlp: Bytes | None = None
    code: int | None = None

    def __init__(
        self,
        *args,
        tx: Transaction | None = None,
        tx_rlp: Bytes | None = None,
        code: int | None = None,
    ):
        """Initialize SendTransactionExceptionError class with the given transaction."""
        super().__init__(*args)
        self.tx = tx
        self.tx_rlp = tx_rlp
        self.code = code

    def __str__(self):
        """Return string representation of the exception."""
        if self.tx is not None:
            return f"{super().__str__()} Transaction={self.tx.hash}"
        elif self.tx_rlp is not None:
            return f"{super().__str__()} Transaction RLP={self.tx_rlp.hex()[:66]}..."
        return super().__str__()


class BaseRPC:
    """Represents a base RPC class for every RPC call used by the simulator."""

    namespace: ClassVar[str]

    def __init__(
        self,
        url: str,
        extra_headers: Dict | None = None,
        *,
        timeout: float = 10.0,
    ):
        """Initialize BaseRPC class with the given url and a per-request timeout."""
        if extra_headers is None:
            extra_headers = {}
        self.url = url
        self.request_id_counter = count(1)
        self.extra_headers = extra_headers
        self.timeout = timeout

    def __init_subclass__(cls) -> None:
        """Set namespace of the RPC class to the lowercase of the class name."""
        namespace = cls.__name__
        if namespace.endswith("RPC"):
            namespace = namespace[:-3]
        cls.namespace = namespace.lower()

    def post_request(self, method: str, *params: Any, extra_headers: Dict | None = None) -> Any:
        """
        Send JSON-RPC POST request to the client RPC server at port defined in the url.

        Transport failures (`requests.ConnectionError`, `requests.Timeout`) are not
        retried here.
        """
        if extra_headers is None:
            extra_headers = {}
        assert self.namespace, "RPC namespace not set"

        payload = {
            "jsonrpc": "2.0",
            "method": f"{self.namespace}_{method}",
            "params": params,
            "id": next(self.request_id_counter),
        }
        base_header = {
            "Content-Type": "application/json",
        }
        headers = base_header | self.extra_headers | extra_headers

        response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        response_json = response.json()

        if "error" in response_json:
            raise JSONRPCError(**response_json["error"])

        assert "result" in response_json, "RPC response didn't contain a result field"
        return response_json["result"]


class EthRPC(BaseRPC):
    """Represents an `eth_X` RPC class for the data API methods used by the simulator."""

    def chain_id(self) -> int:
        """`eth_chainId`: Returns the chain id of the client."""
        return int(self.post_request("chainId"), 16)

    def block_number(self) -> int:
        """`eth_blockNumber`: Returns the number of the latest block."""
        return int(self.post_request("blockNumber"), 16)

    def get_block_by_number(
        self, block_number: BlockNumberType = "latest", full_txs: bool = False
    ) -> BlockResponse | None:
        """`eth_getBlockByNumber`: Returns information about a block by block number."""
        block = hex(block_number) if isinstance(block_number, int) else block_number
        response = self.post_request("getBlockByNumber", block, full_txs)
        if response is None:
            return None
        return BlockResponse.model_validate(response)

    def get_transaction_count(
        self, address: Address, block_number: BlockNumberType = "latest"
    ) -> int:
        """`eth_getTransactionCount`: Returns the number of transactions sent from an address."""
        block = hex(block_number) if isinstance(block_number, int) else block_number
        return int(self.post_request("getTransactionCount", f"{address}", block), 16)

    def get_transaction_by_hash(self, transaction_hash: Hash) -> TransactionByHashResponse | None:
        """`eth_getTransactionByHash`: Returns transaction details."""
        response = self.post_request("getTransactionByHash", f"{transaction_hash}")
        if response is None:
            return None
        return TransactionByHashResponse.model_validate(response)

    def send_raw_transaction(self, transaction_rlp: Bytes) -> Hash:
        """
        `eth_sendRawTransaction`: Send a transaction to the client.

        Rejections by the client are raised as `SendTransactionExceptionError`; transport
        errors propagate unchanged.
        """
        try:
            return Hash(self.post_request("sendRawTransaction", f"{transaction_rlp.hex()}"))
        except JSONRPCError as e:
            raise SendTransactionExceptionError(
                e.message, tx_rlp=transaction_rlp, code=e.code
            ) from e

    def send_transaction(self, transaction: Transaction, raw: Bytes | None = None) -> Hash:
        """
        `eth_sendRawTransaction`: Send a transaction, optionally in a different encoding
        than its canonical one (e.g. the blob network wrapper).
        """
        try:
            result_hash = self.send_raw_transaction(raw if raw is not None else transaction.rlp())
        except SendTransactionExceptionError as e:
            e.tx = transaction
            raise e
        if result_hash != transaction.hash:
            raise SendTransactionExceptionError(
                f"client returned hash {result_hash}, expected {transaction.hash}",
                tx=transaction,
            )
        return result_hash


class EngineRPC(BaseRPC):
    """Represents an Engine API RPC class for every Engine API method used by the CL Mock."""

    def __init__(
        self,
        url: str,
        extra_headers: Dict | None = None,
        *,
        timeout: float = 10.0,
        jwt_secret: bytes = HIVE_JWT_SECRET,
    ):
        """Initialize EngineRPC class with the JWT secret shared with the client."""
        super().__init__(url, extra_headers, timeout=timeout)
        self.jwt_secret = jwt_secret

    def post_request(self, method: str, *params: Any, extra_headers: Dict | None = None) -> Any:
        """Send JSON-RPC POST request authenticated with a fresh JWT token."""
        if extra_headers is None:
            extra_headers = {}
        jwt_token = encode({"iat": int(time.time())}, self.jwt_secret, algorithm="HS256")
        extra_headers = {
            "Authorization": f"Bearer {jwt_token}",
        } | extra_headers
        return super().post_request(method, *params, extra_headers=extra_headers)

    def new_payload(
        self,
        payload: ExecutionPayload,
        versioned_hashes: List[Hash] | None = None,
        parent_beacon_block_root: Hash | None = None,
        *,
        version: int,
    ) -> PayloadStatus:
        """
        `engine_newPayloadVX`: Attempts to execute the given payload on an execution client.

        From version 3 on, the versioned hashes and the parent beacon block root are always
        sent, as JSON `null` when they are None.
        """
        params: List[Any] = [to_json(payload)]
        if version >= 3:
            params += [
                [f"{h}" for h in versioned_hashes] if versioned_hashes is not None else None,
                f"{parent_beacon_block_root}" if parent_beacon_block_root is not None else None,
            ]
        return PayloadStatus.model_validate(self.post_request(f"newPayloadV{version}", *params))

    def forkchoice_updated(
        self,
        forkchoice_state: ForkchoiceState,
        payload_attributes: PayloadAttributes | None = None,
        *,
        version: int,
    ) -> ForkchoiceUpdateResponse:
        """`engine_forkchoiceUpdatedVX`: Updates the forkchoice state of the execution client."""
        return ForkchoiceUpdateResponse.model_validate(
            self.post_request(
                f"forkchoiceUpdatedV{version}",
                to_json(forkchoice_state),
                to_json(payload_attributes),
            )
        )

    def get_payload(
        self,
        payload_id: Bytes,
        *,
        version: int,
    ) -> GetPayloadResponse:
        """
        `engine_getPayloadVX`: Retrieves a payload that was requested through
        `engine_forkchoiceUpdatedVX`.
        """
        response = self.post_request(f"getPayloadV{version}", f"{payload_id}")
        if version == 1:
            # V1 returns the bare execution payload.
            response = {"executionPayload": response}
        return GetPayloadResponse.model_validate(response)


class AdminRPC(BaseRPC):
    """Represents an `admin_X` RPC class, used to find the devp2p endpoint of a client."""

    def node_info(self) -> Dict[str, Any]:
        """`admin_nodeInfo`: Returns the devp2p identity of the client."""
        return self.post_request("nodeInfo")

    def enode(self) -> str:
        """Return the enode URL advertised by the client."""
        return self.node_info()["enode"]
