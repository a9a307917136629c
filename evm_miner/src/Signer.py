"""Signer: Signing service interface and wallet daemon implementation."""

import logging
import os
from abc import ABC, abstractmethod

import httpx

logger = logging.getLogger(__name__)


class SignerError(Exception):
    """Raised when the signing service cannot produce a signature."""

    pass


class Signer(ABC):
    """Abstract signing service.

    Produces signatures over a transaction digest using key material that
    never leaves the service.
    """

    @abstractmethod
    async def sign_digest(self, digest: bytes, public_key: str) -> str:
        """Sign a 32-byte digest.

        :param digest: Digest to sign.
        :param public_key: Public key identifying the signing key.
        :returns: Signature string (e.g. ``SIG_K1_...``).
        """
        pass

    async def close(self) -> None:
        pass


class WalletSigner(Signer):
    """Signer backed by a wallet daemon (keosd-compatible API).

    Communicates with the daemon via Unix domain socket or HTTP.

    :cvar WALLET_SOCKET_PATH: Default Unix socket path of the daemon.
    :ivar url: Optional HTTP URL or socket path override.
    """

    WALLET_SOCKET_PATH = os.path.expanduser("~/eosio-wallet/keosd.sock")

    def __init__(
        self,
        url: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the wallet signer.

        :param url: Optional URL or socket path. Empty uses the default socket.
        :param timeout: Request timeout in seconds.
        :param transport: Optional transport override.
        """
        self.url = url
        self.base_url = url if url.startswith("http") else "http://localhost"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport or self._build_transport(),
            timeout=timeout,
        )

    def _build_transport(self) -> httpx.AsyncHTTPTransport | None:
        """Build HTTP transport for daemon requests."""
        if self.url and not self.url.startswith("http"):
            logger.debug("Using wallet socket: %s", self.url)
            return httpx.AsyncHTTPTransport(uds=self.url)
        if not self.url:
            logger.debug("Using default wallet socket: %s", self.WALLET_SOCKET_PATH)
            return httpx.AsyncHTTPTransport(uds=self.WALLET_SOCKET_PATH)
        return None

    async def sign_digest(self, digest: bytes, public_key: str) -> str:
        """Sign a digest via ``/v1/wallet/sign_digest``.

        :param digest: 32-byte digest.
        :param public_key: Public key held by an unlocked wallet.
        :returns: Signature string.
        :raises SignerError: If the daemon is unreachable or refuses to sign.
        """
        path = "/v1/wallet/sign_digest"
        try:
            response = await self._client.post(path, json=[digest.hex(), public_key])
        except httpx.RequestError as exc:
            raise SignerError(f"wallet {path} error: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "wallet POST %s failed: %s %s",
                path,
                response.status_code,
                response.reason_phrase,
            )
            raise SignerError(
                f"wallet {path} failed: {response.status_code} {response.text[:200]}"
            )

        signature = response.json()
        if not isinstance(signature, str):
            raise SignerError(f"Unexpected wallet response: {signature!r}")
        return signature

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()
