from botguard.fingerprint.tracker import (
    FingerprintTracker,
    generate_fingerprint,
    generate_request_nonce,
)

__all__ = ["FingerprintTracker", "generate_fingerprint", "generate_request_nonce"]
