"""Models module.

This module provides data models and dataclasses for the application.
"""

from milou_ssl.models.certificate import (
    BackupRecord,
    CertificateBundle,
    CertificateFacts,
    CertificateSource,
    ExitCode,
    FindingKind,
    LifecycleAction,
    LifecycleContext,
    LifecycleOutcome,
    LifecycleState,
    PreflightCheck,
    PreflightReport,
    Provider,
    ValidationFinding,
    ValidationResult,
)

__all__ = [
    "BackupRecord",
    "CertificateBundle",
    "CertificateFacts",
    "CertificateSource",
    "ExitCode",
    "FindingKind",
    "LifecycleAction",
    "LifecycleContext",
    "LifecycleOutcome",
    "LifecycleState",
    "PreflightCheck",
    "PreflightReport",
    "Provider",
    "ValidationFinding",
    "ValidationResult",
]
