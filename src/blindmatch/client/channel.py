"""
Client side of the trust boundary.

The ComputeChannel turns (parameters, encrypted query, encrypted batch)
into a self-contained byte bundle, hands it to a transport and loads the
encrypted difference that comes back. A transport is any callable taking
and returning bytes, so the in-process evaluator can be swapped for a
network service without touching the search engine.
"""
import base64
from typing import Callable, Optional

import httpx
from Pyfhel import Pyfhel, PyCtxt

from blindmatch.client.crypto import CiphertextStore
from blindmatch.server.compute import RemoteEvaluator
from blindmatch.shared.errors import CryptoFailure, ProtocolError
from blindmatch.shared.params import CompressionMode
from blindmatch.shared.protocol import (
    BUNDLE_MAGIC,
    RESULT_MAGIC,
    RESULT_SECTIONS,
    pack_sections,
    unpack_sections,
)


Transport = Callable[[bytes], bytes]


class InProcessTransport:
    """Delivers bundles to an evaluator living in the same process."""

    def __init__(self, evaluator: Optional[RemoteEvaluator] = None):
        self.evaluator = evaluator or RemoteEvaluator()
        self.calls = 0

    def __call__(self, bundle: bytes) -> bytes:
        self.calls += 1
        # Copy on both sides: only bytes cross the boundary
        return bytes(self.evaluator.evaluate(bytes(bundle)))


class HttpTransport:
    """Posts bundles to the evaluator HTTP service."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize HTTP transport.

        Args:
            base_url: Evaluator service root
            timeout: Request timeout in seconds
            client: Pre-configured client (its base_url is used as-is)
        """
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self.calls = 0

    def __call__(self, bundle: bytes) -> bytes:
        self.calls += 1
        try:
            resp = self._client.post(
                "/evaluate",
                json={"bundle_b64": base64.b64encode(bundle).decode("ascii")},
            )
        except httpx.HTTPError as e:
            raise ProtocolError(f"Evaluator request failed: {e}") from e

        if resp.status_code != 200:
            raise ProtocolError(f"Evaluator returned HTTP {resp.status_code}: {resp.text}")

        try:
            return base64.b64decode(resp.json()["result_b64"], validate=True)
        except (KeyError, ValueError) as e:
            raise ProtocolError(f"Malformed evaluator response: {e}") from e

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class ComputeChannel:
    """
    Serializes bundles, sends them across the boundary and reads results.

    Bundle sections are written in a fixed order (parameters, query, batch),
    each with the scheme's own compressed serialization.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        compression: CompressionMode = CompressionMode.ZSTD,
    ):
        """
        Initialize channel.

        Args:
            transport: Callable delivering a bundle and returning the result
                       buffer (defaults to an in-process evaluator)
            compression: Compression used for every serialized section
        """
        self.transport = transport or InProcessTransport()
        self.compression = compression

    def build(
        self,
        parameters: Pyfhel,
        encrypted_query: PyCtxt,
        encrypted_batch: PyCtxt,
    ) -> bytes:
        """
        Build a compute bundle.

        Only the context parameters of `parameters` are serialized; its keys
        never enter the bundle.

        Returns:
            Framed bundle bytes
        """
        mode = self.compression.value
        try:
            sections = [
                parameters.to_bytes_context(compr_mode=mode),
                encrypted_query.to_bytes(compr_mode=mode),
                encrypted_batch.to_bytes(compr_mode=mode),
            ]
        except (ValueError, RuntimeError) as e:
            raise CryptoFailure(f"Could not serialize bundle: {e}") from e

        return pack_sections(BUNDLE_MAGIC, sections)

    def evaluate(self, bundle: bytes) -> bytes:
        """
        Send a bundle and return the serialized difference ciphertext.

        Raises:
            ProtocolError: the result buffer is malformed
        """
        result = self.transport(bundle)
        (difference,) = unpack_sections(result, RESULT_MAGIC, RESULT_SECTIONS)
        return difference

    def round_trip(
        self,
        store: CiphertextStore,
        encrypted_query: PyCtxt,
        encrypted_batch: PyCtxt,
    ) -> PyCtxt:
        """Build, send and load the encrypted difference for one batch."""
        bundle = self.build(store.get_context(), encrypted_query, encrypted_batch)
        return store.load_ciphertext(self.evaluate(bundle))
