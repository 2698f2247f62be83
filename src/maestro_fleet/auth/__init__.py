"""
maestro-fleet auth package.

File: src/maestro_fleet/auth/__init__.py

Purpose
- Credential artifact parsing and the host/sandbox freshness reconciler.
"""

from maestro_fleet.auth.credentials import (
    CredentialArtifact,
    CredentialError,
    CredentialReadError,
    auth_label,
    format_expiration,
    is_expired,
    is_expiring_soon,
    parse_credentials,
    read_credentials,
    time_until_expiration_ms,
)
from maestro_fleet.auth.reconciler import (
    AllCredentialsExpiredError,
    CredentialReconciler,
    CredentialReplica,
    NoCredentialsFoundError,
    PropagationError,
    PropagationFailure,
    PropagationTally,
    ReconcileReport,
    ScanFailure,
    ScanResult,
)

__all__ = [
    "AllCredentialsExpiredError",
    "CredentialArtifact",
    "CredentialError",
    "CredentialReadError",
    "CredentialReconciler",
    "CredentialReplica",
    "NoCredentialsFoundError",
    "PropagationError",
    "PropagationFailure",
    "PropagationTally",
    "ReconcileReport",
    "ScanFailure",
    "ScanResult",
    "auth_label",
    "format_expiration",
    "is_expired",
    "is_expiring_soon",
    "parse_credentials",
    "read_credentials",
    "time_until_expiration_ms",
]
