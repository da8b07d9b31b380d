"""Human-readable node identifiers derived from raw public keys."""

from __future__ import annotations

import logging
from typing import Callable

from xrpl.core.addresscodec import encode_node_public_key

__all__ = [
    "FALLBACK_HEX_LENGTH",
    "NodeIdentifierEncoder",
    "abbreviate_identifier",
    "encode_node_public",
    "node_identifier",
]


logger = logging.getLogger(__name__)

FALLBACK_HEX_LENGTH = 8

NodeIdentifierEncoder = Callable[[bytes], str]


def encode_node_public(public_key: bytes) -> str:
    """Encode a 33-byte key into the ledger's ``n...`` node identifier."""

    return encode_node_public_key(bytes(public_key))


def node_identifier(
    public_key: bytes, encoder: NodeIdentifierEncoder | None = None
) -> str:
    """Return the display identifier for ``public_key``.

    Encoder failures fall back to the first hex characters of the key.
    """

    encode = encoder or encode_node_public
    try:
        return encode(bytes(public_key))
    except Exception as exc:  # third-party encoders raise their own types
        fallback = bytes(public_key).hex()[:FALLBACK_HEX_LENGTH]
        logger.warning(
            "Unable to encode node public key; using hex prefix.",
            extra={
                "event": "identity.encode_failed",
                "public_key": bytes(public_key).hex(),
                "size": len(public_key),
                "fallback": fallback,
                "error": str(exc),
            },
        )
        return fallback


def abbreviate_identifier(identifier: str, *, keep: int = 6) -> str:
    """Shorten ``identifier`` to ``head...tail`` for narrow displays."""

    if len(identifier) <= keep * 2 + 3:
        return identifier
    return f"{identifier[:keep]}...{identifier[-keep:]}"
