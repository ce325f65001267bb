"""
samlsig exception types.

Every exception carries a stable ``error_code`` string in addition to its message. Verification failures derive from
:class:`InvalidSignature` and are turned into a ``False`` return value by
:meth:`samlsig.SignedDocument.validate` in soft mode. :class:`InvalidInput` signals structural problems (unparseable
XML or certificates, missing signature elements) and is always raised.
"""

from typing import Optional

import cryptography.exceptions


class SAMLSigException(Exception):
    error_code = "error"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)


class InvalidSignature(cryptography.exceptions.InvalidSignature, SAMLSigException):
    """
    Raised when signature validation fails.
    """

    error_code = "invalid_signature"


class InvalidCertificate(InvalidSignature):
    """
    Raised when the certificate carried by the document is unusable or does not match the trusted certificate.
    """


class CertificateNotRegistered(InvalidCertificate):
    error_code = "request_cert_not_registered"


class NoCertificateInRequest(InvalidCertificate):
    """
    Raised when an X509Certificate element is present in the document but has no content.
    """

    error_code = "no_certificate_in_request"


class InvalidDigest(InvalidSignature):
    """
    Raised when digest validation fails (causing the signature to be untrusted).
    """

    error_code = "digest_mismatch"


class WrongSignatureAlgorithm(InvalidSignature):
    """
    Raised when the document was signed with a digest other than the configured one.
    """

    error_code = "wrong_sig_algorithm"


class KeyValidationError(InvalidSignature):
    error_code = "key_validation_error"


class InvalidInput(ValueError, SAMLSigException):
    error_code = "parse_error"
