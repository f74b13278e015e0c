"""
Content fingerprinting for change detection.

A fingerprint is a fixed-length hex digest of the UTF-8 bytes of the
normalized page text. Equal text always yields equal fingerprints.
"""

import hashlib

import structlog

logger = structlog.get_logger(__name__)


class ContentFingerprinter:
    """Hashes normalized page text."""

    def __init__(self, algorithm: str = "md5"):
        """
        Initialize the fingerprinter.

        Args:
            algorithm: Any fixed-size hashlib algorithm name (md5, sha1, sha256, ...)

        Raises:
            ValueError: unknown or variable-length algorithm
        """
        algorithm = algorithm.lower()
        try:
            probe = hashlib.new(algorithm)
        except ValueError as e:
            raise ValueError(f"Unsupported fingerprint algorithm: {algorithm}") from e
        if probe.digest_size == 0:
            raise ValueError(f"Fingerprint algorithm must have a fixed digest size: {algorithm}")

        self.algorithm = algorithm
        self.hex_length = probe.digest_size * 2
        self.logger = logger.bind(component="fingerprinter")

    def fingerprint(self, text: str) -> str:
        """
        Fingerprint normalized text.

        Args:
            text: Normalized page text

        Returns:
            Lowercase hex digest
        """
        digest = hashlib.new(self.algorithm, text.encode("utf-8")).hexdigest()
        self.logger.debug("Generated fingerprint", fingerprint=digest[:12] + "...", chars=len(text))
        return digest
