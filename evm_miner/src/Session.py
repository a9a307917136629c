"""Session: Miner identity bound to one chain and endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .AntelopeCodec import signing_digest

if TYPE_CHECKING:
    from .LedgerClient import LedgerClient
    from .Signer import Signer


@dataclass(frozen=True)
class MinerIdentity:
    """Account authorizing every relayed action.

    :ivar account: Miner account name.
    :ivar permission: Permission level used for authorization.
    :ivar signing_key: Public key whose private half the signer holds.
    """

    account: str
    permission: str
    signing_key: str

    def __repr__(self) -> str:
        return f"MinerIdentity({self.account}@{self.permission})"


class Session:
    """Signing session for a single active endpoint.

    A new Session is built whenever an endpoint is (re)selected; existing
    sessions are never mutated.

    :ivar identity: Miner identity.
    :ivar chain_id: Hex-encoded chain id reported by the endpoint.
    :ivar url: Endpoint URL.
    :ivar client: Ledger client for the endpoint.
    """

    def __init__(
        self,
        identity: MinerIdentity,
        chain_id: str,
        url: str,
        client: LedgerClient,
        signer: Signer,
    ) -> None:
        self.identity = identity
        self.chain_id = chain_id
        self.url = url
        self.client = client
        self.signer = signer

    async def sign(self, packed_trx: bytes) -> list[str]:
        """Sign a serialized transaction for this session's chain.

        :param packed_trx: Serialized transaction.
        :returns: List with one signature.
        """
        digest = signing_digest(self.chain_id, packed_trx)
        signature = await self.signer.sign_digest(digest, self.identity.signing_key)
        return [signature]

    def __repr__(self) -> str:
        return f"Session({self.identity!r}, chain={self.chain_id[:8]}, url={self.url})"
