"""JSON-RPC methods and helper functions for the Engine API simulator."""

from .rpc import (
    HIVE_JWT_SECRET,
    AdminRPC,
    BaseRPC,
    BlockNumberType,
    EngineRPC,
    EthRPC,
    SendTransactionExceptionError,
)
from .types import (
    BlobsBundle,
    BlockResponse,
    ForkchoiceState,
    ForkchoiceUpdateResponse,
    GetPayloadResponse,
    JSONRPCError,
    PayloadAttributes,
    PayloadStatus,
    PayloadStatusEnum,
    TransactionByHashResponse,
)

__all__ = [
    "HIVE_JWT_SECRET",
    "AdminRPC",
    "BaseRPC",
    "BlobsBundle",
    "BlockNumberType",
    "BlockResponse",
    "EngineRPC",
    "EthRPC",
    "ForkchoiceState",
    "ForkchoiceUpdateResponse",
    "GetPayloadResponse",
    "JSONRPCError",
    "PayloadAttributes",
    "PayloadStatus",
    "PayloadStatusEnum",
    "SendTransactionExceptionError",
    "TransactionByHashResponse",
]
