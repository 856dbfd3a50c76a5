"""Typed ledger accessors executed through the failover router."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_typing import ChecksumAddress
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound
from web3.types import EventData, TxReceipt

from ..abi import (
    load_erc20_abi,
    load_factory_abi,
    load_pair_abi,
    load_rebalancer_abi,
)
from .router import FailoverRouter

logger = logging.getLogger(__name__)


def checksum(address: str) -> ChecksumAddress:
    return AsyncWeb3.to_checksum_address(address)


class LedgerReader:
    """Factory, pair, token and rebalancer reads plus transaction plumbing.

    Every method builds a single-endpoint operation and hands it to the
    router, so each read individually benefits from failover.
    """

    def __init__(self, router: FailoverRouter, chain_id: int | None = None):
        self.router = router
        self.chain_id = chain_id

    # --- chain ---

    async def get_code(self, address: str) -> bytes:
        async def _op(w3: AsyncWeb3) -> bytes:
            return bytes(await w3.eth.get_code(checksum(address)))

        return await self.router.execute(_op, description=f"getCode({address})")

    async def gas_price(self) -> int:
        async def _op(w3: AsyncWeb3) -> int:
            return int(await w3.eth.gas_price)

        return await self.router.execute(_op, description="gasPrice")

    async def block_number(self) -> int:
        async def _op(w3: AsyncWeb3) -> int:
            return int(await w3.eth.block_number)

        return await self.router.execute(_op, description="blockNumber")

    # --- factory ---

    async def all_pairs(self, factory: str, index: int) -> str:
        async def _op(w3: AsyncWeb3) -> str:
            contract = w3.eth.contract(address=checksum(factory), abi=load_factory_abi())
            return await contract.functions.allPairs(index).call()

        return await self.router.execute(_op, description=f"allPairs({index})")

    async def pair_created_logs(
        self, factory: str, from_block: int, to_block: int
    ) -> list[EventData]:
        async def _op(w3: AsyncWeb3) -> list[EventData]:
            contract = w3.eth.contract(address=checksum(factory), abi=load_factory_abi())
            return list(
                await contract.events.PairCreated().get_logs(
                    from_block=from_block, to_block=to_block
                )
            )

        return await self.router.execute(
            _op, description=f"PairCreated logs [{from_block},{to_block}]"
        )

    # --- pairs and tokens ---

    async def token0(self, pair: str) -> str:
        return await self._pair_call(pair, "token0")

    async def token1(self, pair: str) -> str:
        return await self._pair_call(pair, "token1")

    async def total_supply(self, pair: str) -> int:
        return int(await self._pair_call(pair, "totalSupply"))

    async def reserves(self, pair: str) -> tuple[int, int]:
        reserve0, reserve1 = await asyncio.gather(
            self._pair_call(pair, "reserve0"),
            self._pair_call(pair, "reserve1"),
        )
        return int(reserve0), int(reserve1)

    async def symbol(self, token: str) -> str:
        async def _op(w3: AsyncWeb3) -> str:
            contract = w3.eth.contract(address=checksum(token), abi=load_erc20_abi())
            return await contract.functions.symbol().call()

        return await self.router.execute(_op, description=f"symbol({token})")

    async def _pair_call(self, pair: str, fn_name: str) -> Any:
        async def _op(w3: AsyncWeb3) -> Any:
            contract = w3.eth.contract(address=checksum(pair), abi=load_pair_abi())
            return await getattr(contract.functions, fn_name)().call()

        return await self.router.execute(_op, description=f"{fn_name}({pair})")

    # --- rebalancer ---

    async def cooldown(self, rebalancer: str) -> int:
        async def _op(w3: AsyncWeb3) -> int:
            contract = w3.eth.contract(
                address=checksum(rebalancer), abi=load_rebalancer_abi()
            )
            return int(await contract.functions.cooldown().call())

        return await self.router.execute(_op, description="cooldown()")

    async def last_rebalance(self, rebalancer: str, pair: str) -> int:
        async def _op(w3: AsyncWeb3) -> int:
            contract = w3.eth.contract(
                address=checksum(rebalancer), abi=load_rebalancer_abi()
            )
            return int(await contract.functions.lastRebalance(checksum(pair)).call())

        return await self.router.execute(_op, description=f"lastRebalance({pair})")

    async def estimate_rebalance_gas(
        self,
        rebalancer: str,
        pair: str,
        target_ratio_bps: int,
        sender: str | None = None,
    ) -> int:
        async def _op(w3: AsyncWeb3) -> int:
            contract = w3.eth.contract(
                address=checksum(rebalancer), abi=load_rebalancer_abi()
            )
            tx_params = {"from": checksum(sender)} if sender else {}
            return int(
                await contract.functions.rebalance(
                    checksum(pair), target_ratio_bps
                ).estimate_gas(tx_params)
            )

        return await self.router.execute(_op, description=f"estimateGas rebalance({pair})")

    async def build_rebalance_transaction(
        self,
        rebalancer: str,
        pair: str,
        target_ratio_bps: int,
        sender: str,
        gas_price: int,
    ) -> dict[str, Any]:
        async def _op(w3: AsyncWeb3) -> dict[str, Any]:
            contract = w3.eth.contract(
                address=checksum(rebalancer), abi=load_rebalancer_abi()
            )
            sender_checksum = checksum(sender)
            nonce = await w3.eth.get_transaction_count(sender_checksum, "pending")
            chain_id = self.chain_id
            if chain_id is None:
                chain_id = await w3.eth.chain_id
            return dict(
                await contract.functions.rebalance(
                    checksum(pair), target_ratio_bps
                ).build_transaction(
                    {
                        "from": sender_checksum,
                        "nonce": nonce,
                        "gasPrice": gas_price,
                        "chainId": chain_id,
                    }
                )
            )

        return await self.router.execute(_op, description=f"build rebalance({pair})")

    async def rebalance_logs(
        self, rebalancer: str, from_block: int, to_block: int
    ) -> list[EventData]:
        async def _op(w3: AsyncWeb3) -> list[EventData]:
            contract = w3.eth.contract(
                address=checksum(rebalancer), abi=load_rebalancer_abi()
            )
            return list(
                await contract.events.Rebalance().get_logs(
                    from_block=from_block, to_block=to_block
                )
            )

        return await self.router.execute(
            _op, description=f"Rebalance logs [{from_block},{to_block}]"
        )

    # --- transactions ---

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        async def _op(w3: AsyncWeb3) -> str:
            tx_hash = await w3.eth.send_raw_transaction(raw_transaction)
            return AsyncWeb3.to_hex(tx_hash)

        return await self.router.execute(_op, description="sendRawTransaction")

    async def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        async def _op(w3: AsyncWeb3) -> TxReceipt | None:
            try:
                return await w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return await self.router.execute(_op, description=f"receipt({tx_hash})")

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float, poll_latency: float
    ) -> TxReceipt:
        async def _op(w3: AsyncWeb3) -> TxReceipt:
            return await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=poll_latency
            )

        # the client deadline must not pre-empt web3's own receipt timeout
        return await self.router.execute(
            _op, timeout=timeout + poll_latency, description=f"wait({tx_hash})"
        )
