"""
NEAR JSON-RPC Client
Query methods for account state, contract view calls and node information
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


# Structured cause names nearcore reports for missing accounts, contracts and keys
NOT_FOUND_CAUSES = frozenset(["UNKNOWN_ACCOUNT", "NO_CONTRACT_CODE", "UNKNOWN_ACCESS_KEY"])

# Older nodes only report the condition in the human-readable error text
NOT_FOUND_MESSAGE_MARKERS = ("doesn't exist", "does not exist", "MethodNotFound")


# ==================== ERRORS ====================


class NearRpcError(Exception):
    """Error reported by the node (or raised while talking to it)"""

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        cause: Optional[str] = None,
        code: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.name = name
        self.cause = cause
        self.code = code
        self.data = data

    @property
    def is_not_found(self) -> bool:
        """True when the queried account, contract or method does not exist"""
        if self.cause in NOT_FOUND_CAUSES:
            return True
        # Compatibility shim for nodes without structured error causes
        return any(marker in self.message for marker in NOT_FOUND_MESSAGE_MARKERS)

    @classmethod
    def from_payload(cls, error: Dict[str, Any]) -> "NearRpcError":
        """Build an error from a JSON-RPC ``error`` object"""
        cause = error.get("cause") or {}
        data = error.get("data")
        message = data if isinstance(data, str) else error.get("message", "Unknown JSON-RPC error")

        vm_error = (cause.get("info") or {}).get("vm_error")
        if vm_error:
            message = f"{message}: {vm_error}"

        return cls(
            message,
            name=error.get("name"),
            cause=cause.get("name"),
            code=error.get("code"),
            data=data,
        )


class NearRpcTransportError(NearRpcError):
    """Network failure, timeout or undecodable response"""

    @property
    def is_not_found(self) -> bool:
        return False


# ==================== DATA MODELS ====================


@dataclass
class AccountInfo:
    """Account state as returned by ``view_account``"""

    amount: int
    locked: int
    storage_usage: int
    code_hash: str = ""
    block_height: Optional[int] = None
    block_hash: Optional[str] = None

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "AccountInfo":
        return cls(
            amount=int(result["amount"]),
            locked=int(result["locked"]),
            storage_usage=int(result["storage_usage"]),
            code_hash=result.get("code_hash", ""),
            block_height=result.get("block_height"),
            block_hash=result.get("block_hash"),
        )


@dataclass
class GenesisConfig:
    """The subset of the genesis config the explorer relies on"""

    storage_amount_per_byte: int
    chain_id: str = ""

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "GenesisConfig":
        return cls(
            storage_amount_per_byte=int(result["runtime_config"]["storage_amount_per_byte"]),
            chain_id=result.get("chain_id", ""),
        )


# ==================== NEAR RPC CLIENT ====================


class NearRpcClient:
    """
    JSON-RPC query client for a NEAR node
    Safe to share between threads serving concurrent requests
    """

    def __init__(self, rpc_url: str, timeout: int = 10, retry_count: int = 3):
        """
        Initialize NEAR RPC client

        Args:
            rpc_url: Node JSON-RPC endpoint (e.g., https://rpc.mainnet.near.org)
            timeout: Request timeout in seconds
            retry_count: Number of retries for failed requests
        """
        self.rpc_url = rpc_url.rstrip("/")
        self.timeout = timeout

        # JSON-RPC reads are idempotent, so POST is safe to retry
        self.session = requests.Session()
        retry = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=frozenset(["POST"]),
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def send_json_rpc(self, method: str, params: Any = None) -> Any:
        """Send a JSON-RPC request and return its ``result``"""
        payload = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": method,
            "params": params if params is not None else [],
        }
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.error(f"RPC timeout: {method} - {e}")
            raise NearRpcTransportError(f"Request timed out: {method}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"RPC request failed: {method} - {e}")
            raise NearRpcTransportError(f"Request failed: {method}: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"RPC response is not JSON: {method} (HTTP {response.status_code})")
            raise NearRpcTransportError(
                f"Undecodable response for {method} (HTTP {response.status_code})"
            ) from e

        if isinstance(body, dict) and body.get("error"):
            error = NearRpcError.from_payload(body["error"])
            if error.is_not_found:
                logger.debug(f"RPC not found: {method} - {error}")
            else:
                logger.error(f"RPC error: {method} - {error}")
            raise error

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            logger.error(f"RPC HTTP error: {method} - {e}")
            raise NearRpcTransportError(f"HTTP error for {method}: {e}") from e

        if not isinstance(body, dict) or "result" not in body:
            raise NearRpcTransportError(f"Malformed JSON-RPC response for {method}")
        return body["result"]

    def query(self, request_type: str, **params: Any) -> Dict[str, Any]:
        """Run a ``query`` request against the final block"""
        return self.send_json_rpc(
            "query", {"request_type": request_type, "finality": "final", **params}
        )

    # ==================== ACCOUNTS ====================

    def view_account(self, account_id: str) -> AccountInfo:
        """Get account balances and storage usage"""
        return AccountInfo.from_rpc(self.query("view_account", account_id=account_id))

    def view_access_key_list(self, account_id: str) -> Dict[str, Any]:
        """Get all access keys of an account"""
        return self.query("view_access_key_list", account_id=account_id)

    def call_view_method(
        self, contract_id: str, method_name: str, args: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Call a contract view method and decode its JSON return value"""
        args_base64 = base64.b64encode(json.dumps(args or {}).encode("utf-8")).decode("ascii")
        result = self.query(
            "call_function",
            account_id=contract_id,
            method_name=method_name,
            args_base64=args_base64,
        )

        if not isinstance(result, dict):
            raise NearRpcTransportError(
                f"Malformed call_function result from {contract_id}.{method_name}"
            )

        # Older nodes report execution failures inline instead of as an RPC error
        if result.get("error"):
            error = NearRpcError(str(result["error"]), data=result["error"])
            if not error.is_not_found:
                logger.error(f"View call failed: {contract_id}.{method_name} - {error}")
            raise error

        try:
            raw = bytes(result.get("result", []))
        except (TypeError, ValueError) as e:
            raise NearRpcTransportError(
                f"Malformed call_function result from {contract_id}.{method_name}"
            ) from e
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise NearRpcTransportError(
                f"Undecodable return value from {contract_id}.{method_name}"
            ) from e

    # ==================== CHAIN ====================

    def get_genesis_config(self) -> GenesisConfig:
        """Get protocol constants from the genesis config"""
        return GenesisConfig.from_rpc(self.send_json_rpc("EXPERIMENTAL_genesis_config", {}))

    def get_transaction_status(self, tx_hash: str, sender_account_id: str) -> Dict[str, Any]:
        """Get transaction outcome by hash and signer"""
        return self.send_json_rpc("tx", [tx_hash, sender_account_id])

    def get_final_block(self) -> Dict[str, Any]:
        """Get the latest final block"""
        return self.send_json_rpc("block", {"finality": "final"})

    def get_status(self) -> Dict[str, Any]:
        """Get node status"""
        return self.send_json_rpc("status")

    def get_validators(self) -> Dict[str, Any]:
        """Get current, next and proposed validators for the latest epoch"""
        return self.send_json_rpc("validators", [None])
