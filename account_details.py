"""
Account balance aggregation for the NEAR explorer

Combines an account's own state with its lockup account, the lockup's
staking pool delegation and the genesis storage price into a single
balance breakdown.
"""

from __future__ import annotations

import hashlib
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from near_rpc_client import AccountInfo, GenesisConfig, NearRpcError

logger = logging.getLogger(__name__)

# Five fan-out calls plus the dependent staking pool balance
MAX_CONCURRENT_CALLS = 6


class UpstreamFailure(Exception):
    """A required node query failed for a reason other than not-found"""

    def __init__(self, call: str, account_id: str, message: str):
        super().__init__(f"{call} failed for {account_id}: {message}")
        self.call = call
        self.account_id = account_id


@dataclass
class FactSet:
    """Raw facts about an account and its lockup, as fetched from the node"""

    account_info: AccountInfo
    genesis_config: GenesisConfig
    lockup_account_info: Optional[AccountInfo] = None
    lockup_locked_balance: Optional[int] = None
    lockup_staking_pool_id: Optional[str] = None
    lockup_delegated_balance: Optional[int] = None


@dataclass
class AccountDetails:
    """Balance breakdown of an account"""

    storage_usage: int
    staked_balance: int
    non_staked_balance: int
    minimum_balance: int
    available_balance: int
    total_balance: int
    lockup_account_id: Optional[str] = None
    lockup_total_balance: Optional[int] = None
    lockup_locked_balance: Optional[int] = None
    lockup_unlocked_balance: Optional[int] = None
    anomalies: List[str] = field(default_factory=list)

    @property
    def has_lockup(self) -> bool:
        return self.lockup_account_id is not None

    def to_dict(self) -> Dict[str, str]:
        """Serialize with every quantity as a decimal string"""
        result = {
            "storageUsage": str(self.storage_usage),
            "stakedBalance": str(self.staked_balance),
            "nonStakedBalance": str(self.non_staked_balance),
            "minimumBalance": str(self.minimum_balance),
            "availableBalance": str(self.available_balance),
            "totalBalance": str(self.total_balance),
        }
        if self.has_lockup:
            result.update(
                {
                    "lockupAccountId": self.lockup_account_id,
                    "lockupTotalBalance": str(self.lockup_total_balance),
                    "lockupLockedBalance": str(self.lockup_locked_balance),
                    "lockupUnlockedBalance": str(self.lockup_unlocked_balance),
                }
            )
        return result


def derive_lockup_account_id(account_id: str, lockup_suffix: str) -> str:
    """
    Get the lockup account id that belongs to ``account_id``

    Lockup accounts are named after the first 40 hex characters of the
    SHA-256 digest of the owner account id. An id that already carries the
    lockup suffix is the lockup account itself.
    """
    if account_id.endswith(f".{lockup_suffix}"):
        return account_id
    digest = hashlib.sha256(account_id.encode("utf-8")).hexdigest()
    return f"{digest[:40]}.{lockup_suffix}"


def _saturating_sub(minuend: int, subtrahend: int, anomaly: str, details: AccountDetails) -> int:
    difference = minuend - subtrahend
    if difference < 0:
        logger.warning(
            f"Balance anomaly {anomaly}: {minuend} - {subtrahend} is negative, reporting 0"
        )
        details.anomalies.append(anomaly)
        return 0
    return difference


def combine_balances(
    account_info: AccountInfo,
    lockup_account_info: Optional[AccountInfo],
    lockup_locked_balance: Optional[int],
    lockup_delegated_balance: Optional[int],
    genesis_config: GenesisConfig,
    account_id: str,
    lockup_account_id: str,
) -> AccountDetails:
    """Derive the balance breakdown from already fetched facts"""
    storage_usage = account_info.storage_usage
    staked_balance = account_info.locked
    non_staked_balance = account_info.amount
    minimum_balance = genesis_config.storage_amount_per_byte * storage_usage

    details = AccountDetails(
        storage_usage=storage_usage,
        staked_balance=staked_balance,
        non_staked_balance=non_staked_balance,
        minimum_balance=minimum_balance,
        available_balance=0,
        total_balance=staked_balance + non_staked_balance,
    )
    # Reserved is the larger of the stake and the storage rent
    details.available_balance = _saturating_sub(
        non_staked_balance + staked_balance,
        max(staked_balance, minimum_balance),
        "available_balance_underflow",
        details,
    )

    if account_id == lockup_account_id:
        # The account's own amount and locked already are the lockup balance
        if lockup_delegated_balance is not None:
            details.total_balance += lockup_delegated_balance
    elif lockup_account_info is not None:
        if lockup_locked_balance is None:
            raise UpstreamFailure(
                "get_locked_amount", lockup_account_id, "lockup account has no locked amount"
            )
        lockup_total_balance = lockup_account_info.locked + lockup_account_info.amount
        if lockup_delegated_balance is not None:
            lockup_total_balance += lockup_delegated_balance

        details.total_balance += lockup_total_balance
        details.lockup_account_id = lockup_account_id
        details.lockup_total_balance = lockup_total_balance
        details.lockup_locked_balance = lockup_locked_balance
        details.lockup_unlocked_balance = _saturating_sub(
            lockup_total_balance,
            lockup_locked_balance,
            "lockup_unlocked_balance_underflow",
            details,
        )

    return details


def _to_balance(value: Any, call: str, account_id: str) -> Optional[int]:
    if value is None:
        return None
    # JSON numbers may arrive as floats; only exact representations are balances
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise UpstreamFailure(call, account_id, f"not a balance: {value!r}")
    try:
        balance = int(value)
    except ValueError as e:
        raise UpstreamFailure(call, account_id, f"not a balance: {value!r}") from e
    if balance < 0:
        raise UpstreamFailure(call, account_id, f"not a balance: {value!r}")
    return balance


class AccountDetailsService:
    """Fetches account facts from the node concurrently and aggregates them"""

    def __init__(self, client, lockup_suffix: str):
        """
        Args:
            client: Ledger query client (see ``near_rpc_client.NearRpcClient``)
            lockup_suffix: Account id suffix of the lockup factory, e.g. ``lockup.near``
        """
        self.client = client
        self.lockup_suffix = lockup_suffix

    def _fetch(
        self, call: str, account_id: str, fn: Callable[..., Any], *args: Any, optional: bool = True
    ) -> Any:
        try:
            return fn(*args)
        except NearRpcError as e:
            if optional and e.is_not_found:
                logger.debug(f"{call} for {account_id}: not found")
                return None
            raise UpstreamFailure(call, account_id, str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamFailure(call, account_id, f"malformed response: {e!r}") from e

    def gather_facts(self, account_id: str, lockup_account_id: str) -> Optional[FactSet]:
        """
        Query everything needed to compute account details

        Returns None if ``account_id`` does not exist. Not-found answers
        about the lockup account, its contract or its staking pool count as
        absent data; any other failure raises ``UpstreamFailure``.
        """
        with ThreadPoolExecutor(
            max_workers=MAX_CONCURRENT_CALLS, thread_name_prefix="account-details"
        ) as executor:
            account_future = executor.submit(
                self._fetch, "view_account", account_id, self.client.view_account, account_id
            )
            lockup_account_future: Optional[Future] = None
            if lockup_account_id != account_id:
                lockup_account_future = executor.submit(
                    self._fetch,
                    "view_account",
                    lockup_account_id,
                    self.client.view_account,
                    lockup_account_id,
                )
            locked_future = executor.submit(
                self._fetch,
                "get_locked_amount",
                lockup_account_id,
                self.client.call_view_method,
                lockup_account_id,
                "get_locked_amount",
                {},
            )
            staking_pool_future = executor.submit(
                self._fetch,
                "get_staking_pool_account_id",
                lockup_account_id,
                self.client.call_view_method,
                lockup_account_id,
                "get_staking_pool_account_id",
                {},
            )
            genesis_future = executor.submit(
                self._fetch,
                "EXPERIMENTAL_genesis_config",
                account_id,
                self.client.get_genesis_config,
                optional=False,
            )

            # The delegated balance only depends on the staking pool id
            staking_pool_id = staking_pool_future.result()
            delegated_future: Optional[Future] = None
            if staking_pool_id:
                delegated_future = executor.submit(
                    self._fetch,
                    "get_account_total_balance",
                    lockup_account_id,
                    self.client.call_view_method,
                    staking_pool_id,
                    "get_account_total_balance",
                    {"account_id": lockup_account_id},
                )

            account_info = account_future.result()
            lockup_account_info = lockup_account_future.result() if lockup_account_future else None
            lockup_locked_balance = locked_future.result()
            genesis_config = genesis_future.result()
            if account_info is None:
                return None
            delegated_balance = delegated_future.result() if delegated_future else None

        return FactSet(
            account_info=account_info,
            genesis_config=genesis_config,
            lockup_account_info=lockup_account_info,
            lockup_locked_balance=_to_balance(
                lockup_locked_balance, "get_locked_amount", lockup_account_id
            ),
            lockup_staking_pool_id=staking_pool_id,
            lockup_delegated_balance=_to_balance(
                delegated_balance, "get_account_total_balance", lockup_account_id
            ),
        )

    def get_account_details(self, account_id: str) -> Optional[AccountDetails]:
        """Get the balance breakdown of an account, or None if it does not exist"""
        if not account_id:
            raise ValueError("account_id must not be empty")
        lockup_account_id = derive_lockup_account_id(account_id, self.lockup_suffix)
        facts = self.gather_facts(account_id, lockup_account_id)
        if facts is None:
            logger.info(f"Account {account_id} does not exist")
            return None

        return combine_balances(
            facts.account_info,
            facts.lockup_account_info,
            facts.lockup_locked_balance,
            facts.lockup_delegated_balance,
            facts.genesis_config,
            account_id,
            lockup_account_id,
        )
