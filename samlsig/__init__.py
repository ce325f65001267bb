"""
Use :class:`samlsig.SignedDocument` to verify the XML Signature of a SAML request or response, embedded in the document
(HTTP-POST binding) or carried in the query string (HTTP-Redirect binding).
See `samlsig documentation <#synopsis>`_ for examples.
"""

import logging

from .algorithms import CanonicalizationMethod, DigestAlgorithm, resolve_c14n_method, resolve_digest_algorithm
from .exceptions import (
    CertificateNotRegistered,
    InvalidCertificate,
    InvalidDigest,
    InvalidInput,
    InvalidSignature,
    KeyValidationError,
    NoCertificateInRequest,
    SAMLSigException,
    WrongSignatureAlgorithm,
)
from .processor import XMLSignatureProcessor
from .util import build_query, certificate_fingerprint, load_x509_certificate, namespaces
from .verifier import SignedDocument, ValidationConfiguration

logging.getLogger(__name__).addHandler(logging.NullHandler())
