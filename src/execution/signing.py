"""
Request signing for wallet-authenticated venues.

A WalletSigner turns unsigned request parameters into a SignedRequest:

1. Inject recvWindow and a millisecond timestamp
2. Canonicalize: sort keys recursively, stringify every scalar, compact JSON
3. ABI-encode (string payload, address user, address signer, uint256 nonce)
4. keccak-256 the encoding
5. Wrap the hash in the EIP-191 personal-message prefix and hash again
6. ECDSA-sign with the API wallet key, recovery id normalized to 27/28
7. Attach user, signer, nonce and the 0x-prefixed signature

Every call draws a fresh nonce and timestamp, so a retried request is a new
signed request and can never be replayed by the venue.
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address, keccak, to_checksum_address
from loguru import logger

from src.core.exceptions import ConfigurationError, SigningError
from src.core.models import SignedRequest


DEFAULT_RECV_WINDOW_MS = 5000


class NonceGenerator:
    """
    Microsecond nonces that strictly increase, even within one microsecond.

    Examples:
        >>> nonces = NonceGenerator()
        >>> first = nonces.next()
        >>> nonces.next() > first
        True
    """

    def __init__(self, clock: Callable[[], int] = time.time_ns):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            now = self._clock() // 1000
            self._last = max(now, self._last + 1)
            return self._last


def _stringify(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _stringify(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify(v) for v in value]
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if value is None:
        return ""
    return str(value)


def canonicalize(params: Dict[str, Any]) -> str:
    """
    Serialize params to the canonical JSON payload that gets signed.

    Keys are sorted at every level and every scalar becomes a string, so the
    same logical request always yields the same bytes.

    Examples:
        >>> canonicalize({"symbol": "BTCUSDT", "quantity": 0.5, "reduceOnly": True})
        '{"quantity":"0.5","reduceOnly":"true","symbol":"BTCUSDT"}'
    """
    return json.dumps(
        _stringify(params),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


class RequestSigner(ABC):
    """Strategy that authenticates outbound request parameters."""

    @abstractmethod
    def sign(self, params: Dict[str, Any]) -> SignedRequest:
        """Return a signed copy of params; params itself is not modified."""


class WalletSigner(RequestSigner):
    """
    EIP-191 signer for venues authenticated by an API wallet.

    Attributes:
        user: Main wallet address that owns the account
        signer: API wallet address whose key signs requests
        recv_window_ms: Validity window the venue enforces on timestamps

    Examples:
        >>> signer = WalletSigner(user="0xabc...", signer="0xdef...",
        ...                       private_key="0x4c0883a6...")
        >>> signed = signer.sign({"symbol": "BTCUSDT"})
        >>> signed.params["signature"].startswith("0x")
        True
    """

    def __init__(
        self,
        user: str,
        signer: str,
        private_key: str,
        recv_window_ms: int = DEFAULT_RECV_WINDOW_MS,
        nonces: Optional[NonceGenerator] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Validate addresses and key material.

        Raises:
            ConfigurationError: If an address is malformed or the private key
                cannot be parsed.
        """
        for label, address in (("user", user), ("signer", signer)):
            if not address or not is_address(address):
                raise ConfigurationError(f"Invalid {label} address: {address!r}")

        key = private_key[2:] if private_key.startswith("0x") else private_key
        try:
            self._account = Account.from_key(bytes.fromhex(key))
        except Exception as e:
            raise ConfigurationError(f"Invalid private key: {e}") from e

        self.user = to_checksum_address(user)
        self.signer = to_checksum_address(signer)
        self.recv_window_ms = recv_window_ms
        self._nonces = nonces or NonceGenerator()
        self._clock = clock

        if self._account.address != self.signer:
            logger.warning(
                f"Private key address {self._account.address} does not match "
                f"configured signer {self.signer}"
            )

    def sign(self, params: Dict[str, Any]) -> SignedRequest:
        """
        Sign params with a fresh nonce and timestamp.

        Args:
            params: Unsigned request parameters

        Returns:
            SignedRequest: Parameters with recvWindow, timestamp, user,
                signer, nonce and signature attached

        Raises:
            SigningError: If encoding or signing fails
        """
        payload = dict(params)
        payload["recvWindow"] = str(self.recv_window_ms)
        payload["timestamp"] = str(int(self._clock() * 1000))
        nonce = self._nonces.next()

        try:
            message = canonicalize(payload)
            encoded = abi_encode(
                ["string", "address", "address", "uint256"],
                [message, self.user, self.signer, nonce],
            )
            digest = keccak(encoded)
            signed = self._account.sign_message(encode_defunct(primitive=digest))
        except (ValueError, TypeError, OverflowError) as e:
            raise SigningError(f"Failed to sign request: {e}") from e

        v = signed.v if signed.v >= 27 else signed.v + 27
        raw = signed.r.to_bytes(32, "big") + signed.s.to_bytes(32, "big") + bytes([v])
        signature = "0x" + raw.hex()

        payload["user"] = self.user
        payload["signer"] = self.signer
        payload["nonce"] = str(nonce)
        payload["signature"] = signature

        return SignedRequest(params=payload, nonce=nonce, signature=signature)
