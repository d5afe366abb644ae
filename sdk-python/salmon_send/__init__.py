from .envelope import MagicEnvelope, EnvelopeSignature, sign_envelope
from .delivery import DeliveryResult, deliver
from .errors import SalmonError, SalmonErrorCode
from .keys import TrustedKeyRing, load_private_key
from .magicsig import MagicPublicKey

__version__ = "0.1.0"

__all__ = [
    "MagicEnvelope",
    "EnvelopeSignature",
    "sign_envelope",
    "DeliveryResult",
    "deliver",
    "SalmonError",
    "SalmonErrorCode",
    "TrustedKeyRing",
    "load_private_key",
    "MagicPublicKey",
]
