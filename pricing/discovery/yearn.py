"""
Yearn Vault Discovery

Vault share tokens and their underlying assets. The Kong GraphQL API is
asked first; when it fails or knows no vaults for the chain, the on-chain
vault registries are enumerated instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..errors import SourceUnavailable
from ..models import TokenInfo
from .base import deduplicate_tokens
from .onchain import ZERO_ADDRESS, RpcClient, RpcError, _selector_from_signature, encode_uint256
from .sources import USER_AGENT, _as_int, _is_address

logger = logging.getLogger(__name__)

KONG_URL = "https://kong.yearn.farm/api/gql"

VAULTS_QUERY = """
query GetVaults {
  vaults(chainId: %d) {
    address
    token
    asset { address name symbol decimals }
  }
}
"""


class YearnVaultsSource:
    """
    Yearn vaults for one chain.

    Raises SourceUnavailable when Kong failed and no registry fallback
    produced any vault.
    """

    name = "yearn"
    timeout_s = 90.0

    def __init__(
        self,
        chain_id: int,
        client: httpx.AsyncClient,
        rpc: Optional[RpcClient] = None,
        registries: Sequence[str] = (),
        kong_url: str = KONG_URL,
        request_timeout: float = 30.0,
        max_registry_vaults: int = 200,
        batch_size: int = 50,
    ):
        self.chain_id = chain_id
        self._client = client
        self._rpc = rpc
        self._registries = tuple(registries)
        self._kong_url = kong_url
        self._request_timeout = request_timeout
        self._max_registry_vaults = max_registry_vaults
        self._batch_size = batch_size

    async def discover_tokens(self, chain_id: int) -> List[TokenInfo]:
        if chain_id != self.chain_id:
            return []

        kong_error: Optional[str] = None
        try:
            tokens = await self._discover_from_kong(chain_id)
        except (httpx.HTTPError, ValueError) as exc:
            kong_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Yearn: Kong API failed for chain %d: %s", chain_id, kong_error)
            tokens = []

        if not tokens and self._rpc is not None and self._registries:
            tokens = await self._discover_from_registries(chain_id)
        elif not tokens and kong_error:
            raise SourceUnavailable(self.name, f"Kong API failed and no registry fallback: {kong_error}")

        unique = deduplicate_tokens(tokens)
        logger.debug("Yearn: discovered %d tokens for chain %d", len(unique), chain_id)
        return unique

    async def _discover_from_kong(self, chain_id: int) -> List[TokenInfo]:
        response = await self._client.post(
            self._kong_url,
            json={"query": VAULTS_QUERY % chain_id},
            timeout=self._request_timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
        response.raise_for_status()
        payload = response.json()

        vaults = (payload.get("data") or {}).get("vaults") if isinstance(payload, dict) else None
        if not isinstance(vaults, list):
            raise ValueError("unexpected Kong response shape")

        tokens: List[TokenInfo] = []
        missing_underlying: List[str] = []
        for vault in vaults:
            if not isinstance(vault, dict) or not _is_address(vault.get("address")):
                continue
            vault_address = vault["address"].lower()
            tokens.append(TokenInfo(address=vault_address, chain_id=chain_id, source=self.name))

            asset: Dict[str, Any] = vault.get("asset") if isinstance(vault.get("asset"), dict) else {}
            underlying = asset.get("address") or vault.get("token")
            if _is_address(underlying) and underlying.lower() != ZERO_ADDRESS:
                tokens.append(TokenInfo(
                    address=underlying.lower(),
                    chain_id=chain_id,
                    source=self.name,
                    symbol=asset.get("symbol"),
                    name=asset.get("name"),
                    decimals=_as_int(asset.get("decimals")),
                ))
            else:
                missing_underlying.append(vault_address)

        if missing_underlying and self._rpc is not None:
            tokens.extend(await self._underlying_tokens(missing_underlying, chain_id))
        return tokens

    async def _discover_from_registries(self, chain_id: int) -> List[TokenInfo]:
        results = await asyncio.gather(
            *(self._registry_vaults(registry) for registry in self._registries),
            return_exceptions=True,
        )

        vaults: List[str] = []
        failures = 0
        for registry, result in zip(self._registries, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures += 1
                logger.warning("Yearn: registry %s failed on chain %d: %s", registry, chain_id, result)
                continue
            vaults.extend(result)

        if failures == len(self._registries):
            raise SourceUnavailable(self.name, f"Kong API and all {failures} vault registries failed")

        tokens = [TokenInfo(address=vault, chain_id=chain_id, source=self.name) for vault in vaults]
        tokens.extend(await self._underlying_tokens(vaults, chain_id))
        return tokens

    async def _registry_vaults(self, registry: str) -> List[str]:
        count = await self._rpc.call_uint(registry, _selector_from_signature("numVaults()"))
        if not count:
            return []
        count = min(count, self._max_registry_vaults)

        selector = _selector_from_signature("vaults(uint256)")
        vaults: List[str] = []
        for start in range(0, count, self._batch_size):
            indices = range(start, min(start + self._batch_size, count))
            batch = await asyncio.gather(
                *(self._rpc.call_address(registry, selector + encode_uint256(i)) for i in indices),
                return_exceptions=True,
            )
            vaults.extend(v for v in batch if isinstance(v, str))
        return vaults

    async def _underlying_tokens(self, vaults: Sequence[str], chain_id: int) -> List[TokenInfo]:
        tokens: List[TokenInfo] = []
        for start in range(0, len(vaults), self._batch_size):
            chunk = vaults[start:start + self._batch_size]
            underlying = await asyncio.gather(*(self._underlying_of(vault) for vault in chunk))
            tokens.extend(
                TokenInfo(address=address, chain_id=chain_id, source=self.name)
                for address in underlying
                if address
            )
        return tokens

    async def _underlying_of(self, vault: str) -> Optional[str]:
        """``token()`` for v2 vaults, ``asset()`` for ERC-4626 v3 vaults."""
        for signature in ("token()", "asset()"):
            try:
                address = await self._rpc.call_address(vault, _selector_from_signature(signature))
            except (RpcError, httpx.HTTPError, ValueError) as exc:
                logger.debug("Yearn: %s on %s failed: %s", signature, vault, exc)
                continue
            if address:
                return address
        return None


__all__ = ["YearnVaultsSource", "KONG_URL"]
