"""Lifecycle decision engine.

Given the live bundle (or none), the requested domain and the caller's provider
preference, decide whether to keep, renew, acquire or generate a certificate.
Every committed change goes through CertificateStore.backup_then_replace.

States and transitions:

    NO_CERTIFICATE                 -> acquire (Let's Encrypt) or generate
    HAS_INVALID_CERTIFICATE        -> back up as invalid-<ts>, then as NO_CERTIFICATE
    HAS_EXPIRING_SOON_CERTIFICATE  -> renew; on failure keep it and warn
    HAS_VALID_CERTIFICATE          -> keep (replace only when forced)
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

from ..logging_audit import log_audit_event
from ..models.certificate import (
    BackupRecord,
    CertificateBundle,
    CertificateSource,
    FindingKind,
    LifecycleAction,
    LifecycleContext,
    LifecycleOutcome,
    LifecycleState,
    Provider,
    ValidationResult,
)
from ..utils.exceptions import (
    AcmeError,
    AcquisitionFailedError,
    CertificateNotFoundError,
    GenerationFailedError,
    PreflightFailedError,
)
from .acme import AcmeAcquirer, can_use_letsencrypt
from .generator import CertificateProfile, KeyPairGenerator, profile_for_domain
from .matcher import is_local_domain
from .store import BACKUP_LABEL_FORMAT, CertificateStore
from .validator import Validator

logger = logging.getLogger(__name__)

INVALID_BACKUP_PREFIX = "invalid-"


def classify(result: ValidationResult) -> LifecycleState:
    """Map a validation result to a lifecycle state."""
    if result.has(FindingKind.MISSING_FILE):
        return LifecycleState.NO_CERTIFICATE
    if not result.is_valid:
        return LifecycleState.HAS_INVALID_CERTIFICATE
    if result.has(FindingKind.EXPIRING_SOON):
        return LifecycleState.HAS_EXPIRING_SOON_CERTIFICATE
    return LifecycleState.HAS_VALID_CERTIFICATE


def resolve_provider(context: LifecycleContext) -> Provider:
    """Turn the caller's preference into a concrete provider for the domain."""
    if is_local_domain(context.domain):
        if context.provider == Provider.LETSENCRYPT:
            logger.warning(
                f"Let's Encrypt cannot issue certificates for {context.domain}; "
                f"using a self-signed certificate"
            )
        return Provider.SELF_SIGNED
    if context.provider == Provider.AUTO:
        if can_use_letsencrypt(context.domain):
            return Provider.LETSENCRYPT
        return Provider.SELF_SIGNED
    return context.provider


class LifecyclePolicy:
    """Ensure a usable certificate exists for a domain.

    Attributes:
        generator: Self-signed generator
        acquirer: ACME acquirer; None disables Let's Encrypt
        validator: Validator shared with the store
        install_consent: Called (interactive runs only) before installing a
            missing ACME client; returns True to proceed
    """

    def __init__(
        self,
        generator: Optional[KeyPairGenerator] = None,
        acquirer: Optional[AcmeAcquirer] = None,
        validator: Optional[Validator] = None,
        install_consent: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.generator = generator or KeyPairGenerator()
        self.acquirer = acquirer
        self.validator = validator or Validator()
        self.install_consent = install_consent

    def store_for(self, context: LifecycleContext) -> CertificateStore:
        return CertificateStore(context.ssl_path, context.cert_name, validator=self.validator)

    def assess(
        self, context: LifecycleContext, bundle: Optional[CertificateBundle]
    ) -> ValidationResult:
        """Validate a bundle against the context's domain and threshold."""
        return self.validator.validate(
            bundle,
            expected_domain=context.domain,
            renewal_threshold_days=context.renewal_threshold_days,
            enforce_domain=context.enforce_domain,
            allow_local=True,
        )

    def ensure(self, context: LifecycleContext) -> LifecycleOutcome:
        """Bring the live certificate into a usable state.

        Args:
            context: Domain, paths and preferences for this invocation

        Returns:
            LifecycleOutcome describing what was done

        Raises:
            PreflightFailedError: Forced Let's Encrypt run whose preflight failed
            AcquisitionFailedError: Forced Let's Encrypt run whose acquisition failed
            GenerationFailedError: Both the profile and minimal generators failed
            BackupError: The previous bundle could not be backed up
        """
        store = self.store_for(context)
        bundle = store.load()
        result = self.assess(context, bundle)
        state = classify(result)
        warnings: List[str] = []
        logger.info(f"Certificate state for {context.domain}: {state.value}")

        if result.is_valid and bundle is not None:
            result = self._correct_permissions(store, context, result, warnings)

        if state == LifecycleState.HAS_VALID_CERTIFICATE and not context.force:
            return LifecycleOutcome(
                state_before=state,
                state_after=state,
                action=LifecycleAction.PRESERVED,
                source=bundle.source,
                result=result,
                warnings=warnings,
            )

        if state == LifecycleState.HAS_EXPIRING_SOON_CERTIFICATE and not context.force:
            return self._renew(store, context, bundle, result, warnings)

        label = None
        if state == LifecycleState.HAS_INVALID_CERTIFICATE:
            label = INVALID_BACKUP_PREFIX + datetime.now(timezone.utc).strftime(
                BACKUP_LABEL_FORMAT
            )
            for message in result.errors:
                warnings.append(f"Replacing invalid certificate: {message}")
                logger.warning(f"Replacing invalid certificate: {message}")

        return self._provision(store, context, state, warnings, label)

    def renew(self, context: LifecycleContext) -> LifecycleOutcome:
        """Renew the live certificate regardless of how much validity remains.

        Missing or invalid certificates are handled as by ``ensure``.

        Raises:
            CertificateNotFoundError: If there is no certificate to renew
        """
        store = self.store_for(context)
        bundle = store.load()
        if bundle is None:
            raise CertificateNotFoundError(f"No certificate to renew at {context.ssl_path}")

        result = self.assess(context, bundle)
        state = classify(result)
        if state in (LifecycleState.NO_CERTIFICATE, LifecycleState.HAS_INVALID_CERTIFICATE):
            return self.ensure(context)

        return self._renew(store, context, bundle, result, [])

    def import_bundle(
        self, context: LifecycleContext, cert_bytes: bytes, key_bytes: bytes
    ) -> LifecycleOutcome:
        """Validate and commit a user-provided pair.

        Raises:
            ImportRejectedError: If the pair has blocking findings
        """
        store = self.store_for(context)
        state = classify(self.assess(context, store.load()))
        before_labels = {r.label for r in store.list_backups()}

        bundle = store.import_user_provided(
            cert_bytes,
            key_bytes,
            expected_domain=context.domain,
            enforce_domain=context.enforce_domain,
            renewal_threshold_days=context.renewal_threshold_days,
        )
        return self._committed(
            store, context, state, LifecycleAction.IMPORTED, bundle, [], before_labels
        )

    def consolidate(
        self, context: LifecycleContext, locations: Optional[Tuple[Path, ...]] = None
    ) -> Optional[LifecycleOutcome]:
        """Promote the first valid pair from the legacy locations.

        Returns:
            LifecycleOutcome, or None when no location holds a valid pair
        """
        store = self.store_for(context)
        state = classify(self.assess(context, store.load()))
        before_labels = {r.label for r in store.list_backups()}

        bundle = store.consolidate_from_known_locations(
            locations if locations is not None else context.legacy_locations,
            expected_domain=context.domain,
            enforce_domain=context.enforce_domain,
            renewal_threshold_days=context.renewal_threshold_days,
        )
        if bundle is None:
            return None
        return self._committed(
            store, context, state, LifecycleAction.CONSOLIDATED, bundle, [], before_labels
        )

    def restore(self, context: LifecycleContext, label: str) -> LifecycleOutcome:
        """Make a backup live again (the current pair is backed up first)."""
        store = self.store_for(context)
        state = classify(self.assess(context, store.load()))
        before_labels = {r.label for r in store.list_backups()}

        bundle = store.restore(label)
        return self._committed(
            store, context, state, LifecycleAction.RESTORED, bundle, [], before_labels
        )

    def _provision(
        self,
        store: CertificateStore,
        context: LifecycleContext,
        state: LifecycleState,
        warnings: List[str],
        backup_label: Optional[str],
    ) -> LifecycleOutcome:
        provider = resolve_provider(context)
        bundle: Optional[CertificateBundle] = None
        action = LifecycleAction.GENERATED

        if provider == Provider.LETSENCRYPT:
            try:
                bundle = self._acquire(context)
                action = LifecycleAction.ACQUIRED
            except AcmeError as e:
                if context.provider_is_strict:
                    log_audit_event(
                        "CERTIFICATE_ACQUISITION_FAILED",
                        {"status": "failure", "domain": context.domain, "error_message": str(e)},
                    )
                    raise
                message = f"Let's Encrypt unavailable, falling back to self-signed: {e}"
                logger.warning(message)
                warnings.append(message)

        if bundle is None:
            bundle, action = self._generate_with_fallback(context, warnings)

        record = store.backup_then_replace(bundle, label=backup_label, domain=context.domain)
        return self._outcome(store, context, state, action, warnings, record)

    def _acquire(self, context: LifecycleContext) -> CertificateBundle:
        if self.acquirer is None:
            raise PreflightFailedError(
                "No ACME client configured", reasons=["ACME client not configured"]
            )

        report = self.acquirer.preflight(context.domain)
        if report.only_client_missing and context.interactive and self.install_consent:
            if self.install_consent():
                logger.info("Installing ACME client with user consent")
                if not self.acquirer.client.install():
                    logger.warning("ACME client installation failed")
            else:
                logger.info("ACME client installation declined")

        return self.acquirer.acquire(context.domain, context.email)

    def _generate_with_fallback(
        self, context: LifecycleContext, warnings: List[str]
    ) -> Tuple[CertificateBundle, LifecycleAction]:
        profile = profile_for_domain(context.domain)
        try:
            return self.generator.generate(profile, context.domain), LifecycleAction.GENERATED
        except GenerationFailedError as e:
            message = f"{profile.value} generation failed, using minimal certificate: {e}"
            logger.warning(message)
            warnings.append(message)

        bundle = self.generator.generate(CertificateProfile.MINIMAL, context.domain)
        log_audit_event(
            "CERTIFICATE_FALLBACK_MINIMAL",
            {"status": "success", "domain": context.domain},
        )
        return bundle, LifecycleAction.FALLBACK_MINIMAL

    def _renew(
        self,
        store: CertificateStore,
        context: LifecycleContext,
        bundle: CertificateBundle,
        result: ValidationResult,
        warnings: List[str],
    ) -> LifecycleOutcome:
        state = classify(result)
        try:
            candidate = self._renewed_bundle(context, bundle, result)
            candidate_result = self.assess(context, candidate)
            if not candidate_result.is_valid:
                raise GenerationFailedError(
                    f"Renewed certificate is not usable: {'; '.join(candidate_result.errors)}"
                )
            stale_error = (
                AcquisitionFailedError
                if bundle.source == CertificateSource.LETSENCRYPT
                else GenerationFailedError
            )
            if candidate.certificate_pem == bundle.certificate_pem:
                raise stale_error("Renewal returned the current certificate unchanged")
            if candidate_result.has(FindingKind.EXPIRING_SOON):
                raise stale_error(
                    f"Renewed certificate still expires in {candidate_result.days_until_expiry} "
                    f"days (threshold {context.renewal_threshold_days})"
                )
        except (AcquisitionFailedError, PreflightFailedError, GenerationFailedError) as e:
            message = f"Certificate renewal failed, keeping current certificate: {e}"
            logger.warning(message)
            warnings.append(message)
            warnings.extend(result.warnings)
            log_audit_event(
                "CERTIFICATE_RENEWAL_FAILED",
                {
                    "status": "degraded",
                    "domain": context.domain,
                    "days_left": result.days_until_expiry,
                    "error_message": str(e),
                },
            )
            return LifecycleOutcome(
                state_before=state,
                state_after=state,
                action=LifecycleAction.RENEWAL_FAILED,
                source=bundle.source,
                result=result,
                warnings=warnings,
            )

        record = store.backup_then_replace(candidate, domain=context.domain)
        log_audit_event(
            "CERTIFICATE_RENEWED",
            {"status": "success", "domain": context.domain, "source": candidate.source.value},
        )
        return self._outcome(store, context, state, LifecycleAction.RENEWED, warnings, record)

    def _renewed_bundle(
        self,
        context: LifecycleContext,
        bundle: CertificateBundle,
        result: ValidationResult,
    ) -> CertificateBundle:
        if bundle.source == CertificateSource.LETSENCRYPT:
            if self.acquirer is None:
                raise AcquisitionFailedError("No ACME client configured for renewal")
            return self.acquirer.renew(context.domain)

        if bundle.source == CertificateSource.USER_IMPORTED:
            raise AcquisitionFailedError(
                "Imported certificates cannot be renewed automatically; "
                "import a renewed certificate"
            )

        if bundle.source == CertificateSource.MINIMAL:
            profile = profile_for_domain(context.domain)
        else:
            profile = CertificateProfile(bundle.source.value)
        return self.generator.generate(profile, context.domain)

    def _correct_permissions(
        self,
        store: CertificateStore,
        context: LifecycleContext,
        result: ValidationResult,
        warnings: List[str],
    ) -> ValidationResult:
        if not result.has(FindingKind.BAD_PERMISSIONS):
            return result

        store.fix_permissions()
        for finding in result.findings:
            if finding.kind == FindingKind.BAD_PERMISSIONS:
                warnings.append(f"Corrected: {finding.message}")
        return self.assess(context, store.load())

    def _committed(
        self,
        store: CertificateStore,
        context: LifecycleContext,
        state: LifecycleState,
        action: LifecycleAction,
        bundle: CertificateBundle,
        warnings: List[str],
        before_labels: Set[str],
    ) -> LifecycleOutcome:
        new_backups = [r for r in store.list_backups() if r.label not in before_labels]
        record: Optional[BackupRecord] = new_backups[-1] if new_backups else None
        return self._outcome(store, context, state, action, warnings, record)

    def _outcome(
        self,
        store: CertificateStore,
        context: LifecycleContext,
        state_before: LifecycleState,
        action: LifecycleAction,
        warnings: List[str],
        record: Optional[BackupRecord],
    ) -> LifecycleOutcome:
        live = store.load()
        result = self.assess(context, live)
        warnings.extend(w for w in result.warnings if w not in warnings)
        return LifecycleOutcome(
            state_before=state_before,
            state_after=classify(result),
            action=action,
            source=live.source if live else None,
            result=result,
            warnings=warnings,
            backup=record,
        )
