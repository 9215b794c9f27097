"""Request signing schemes for the affiliate APIs.

Each vendor signs its query parameters differently. Adapters hold a
``RequestSigner`` and call :meth:`RequestSigner.signed`, so nothing above the
adapter needs to know which algorithm is in use.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping


class RequestSigner(ABC):
    """Common interface for per-vendor request signatures."""

    signature_field: str = "sign"

    def __init__(self, secret: str):
        self.secret = secret

    @abstractmethod
    def sign(self, params: Mapping[str, Any]) -> str:
        """Compute the signature for a parameter set (without the signature field)."""

    def signed(self, params: Mapping[str, Any]) -> Dict[str, str]:
        """Return a copy of the params, stringified, with the signature added."""
        out = {k: str(v) for k, v in params.items() if k != self.signature_field}
        out[self.signature_field] = self.sign(out)
        return out


class SortedParamsMd5Signer(RequestSigner):
    """Banggood scheme: MD5 of ``k=v`` pairs joined by ``&`` in key order.

    The API secret takes part in the signature as an ordinary parameter but is
    never sent on the wire.
    """

    signature_field = "signature"

    def __init__(self, secret: str, secret_field: str = "api_secret"):
        super().__init__(secret)
        self.secret_field = secret_field

    def sign(self, params: Mapping[str, Any]) -> str:
        payload = {k: str(v) for k, v in params.items() if k != self.signature_field}
        payload[self.secret_field] = self.secret
        joined = "&".join(f"{k}={payload[k]}" for k in sorted(payload))
        return hashlib.md5(joined.encode("utf-8")).hexdigest()


class HmacSha256Signer(RequestSigner):
    """AliExpress business-interface scheme.

    HMAC-SHA256 keyed by the app secret over the secret followed by the
    concatenated ``kv`` pairs in key order, hex upper-cased.
    """

    signature_field = "sign"
    sign_method = "sha256"

    def sign(self, params: Mapping[str, Any]) -> str:
        concatenated = "".join(
            f"{k}{params[k]}" for k in sorted(params) if k != self.signature_field
        )
        digest = hmac.new(
            self.secret.encode("utf-8"),
            (self.secret + concatenated).encode("utf-8"),
            hashlib.sha256,
        )
        return digest.hexdigest().upper()
