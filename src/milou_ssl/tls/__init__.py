"""TLS certificate generation, inspection, validation and lifecycle.

Leaves first: engine, generator, inspector, matcher, validator, acme, store,
container, policy.
"""

from milou_ssl.tls.acme import AcmeAcquirer, AcmeClient, CertbotClient
from milou_ssl.tls.container import ContainerBridge
from milou_ssl.tls.engine import CryptographyEngine, KeyPairEngine
from milou_ssl.tls.generator import CertificateProfile, KeyPairGenerator
from milou_ssl.tls.inspector import CertificateInspector
from milou_ssl.tls.policy import LifecyclePolicy
from milou_ssl.tls.store import CertificateStore
from milou_ssl.tls.validator import Validator

__all__ = [
    "AcmeAcquirer",
    "AcmeClient",
    "CertbotClient",
    "CertificateInspector",
    "CertificateProfile",
    "CertificateStore",
    "ContainerBridge",
    "CryptographyEngine",
    "KeyPairEngine",
    "KeyPairGenerator",
    "LifecyclePolicy",
    "Validator",
]
