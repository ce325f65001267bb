import logging
import re
from enum import Enum
from typing import Dict, Optional, Type

from cryptography.hazmat.primitives import hashes
from lxml import etree

logger = logging.getLogger(__name__)


class DigestAlgorithm(Enum):
    """
    An enumeration of the digest algorithms recognized in SAML signatures. See the
    `Algorithm Identifiers and Implementation Requirements <http://www.w3.org/TR/xmldsig-core1/#sec-AlgID>`_ section of
    the XML Signature 1.1 standard for details.

    The same digest kind is used for ``DigestMethod``, ``SignatureMethod`` and the ``SigAlg`` redirect parameter; see
    :func:`resolve_digest_algorithm`.
    """

    SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
    SHA384 = "http://www.w3.org/2001/04/xmldsig-more#sha384"
    SHA512 = "http://www.w3.org/2001/04/xmlenc#sha512"

    SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
    """
    SHA1 is not secure for use in digital signatures. It is the fallback for unrecognized or absent algorithm
    identifiers, kept for compatibility with existing SAML deployments. Whether it is accepted for the signature itself
    is decided by :attr:`samlsig.ValidationConfiguration.signature_algorithm`.
    """

    @property
    def implementation(self) -> Type[hashes.HashAlgorithm]:
        """
        The cryptography class that implements the specified algorithm.
        """
        return digest_algorithm_implementations[self]


class CanonicalizationMethod(Enum):
    """
    An enumeration of XML canonicalization methods (also referred to as canonicalization algorithms) recognized in SAML
    signatures. See the `Algorithm Identifiers and Implementation Requirements
    <http://www.w3.org/TR/xmldsig-core1/#sec-AlgID>`_ section of the XML Signature 1.1 standard for details.
    """

    EXCLUSIVE_XML_CANONICALIZATION_1_0 = "http://www.w3.org/2001/10/xml-exc-c14n#"
    CANONICAL_XML_1_0 = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
    CANONICAL_XML_1_1 = "http://www.w3.org/2006/12/xml-c14n11"

    @property
    def exclusive(self) -> bool:
        return self is CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0


digest_algorithm_implementations: Dict[DigestAlgorithm, Type[hashes.HashAlgorithm]] = {
    DigestAlgorithm.SHA1: hashes.SHA1,
    DigestAlgorithm.SHA256: hashes.SHA256,
    DigestAlgorithm.SHA384: hashes.SHA384,
    DigestAlgorithm.SHA512: hashes.SHA512,
}

# Digest sizes accepted from algorithm identifiers. Anything else falls back to SHA1.
digest_algorithms_by_size: Dict[str, DigestAlgorithm] = {
    "256": DigestAlgorithm.SHA256,
    "384": DigestAlgorithm.SHA384,
    "512": DigestAlgorithm.SHA512,
}

algorithm_size_regexp = re.compile(r"(?:rsa-)?sha(\d+)$", flags=re.IGNORECASE)


def _algorithm_identifier(source) -> Optional[str]:
    if isinstance(source, etree._Element):
        return source.get("Algorithm")
    return source


def resolve_digest_algorithm(source, log: Optional[logging.Logger] = None) -> DigestAlgorithm:
    """
    Map an algorithm identifier to the digest it uses.

    :param source:
        An algorithm URI such as ``http://www.w3.org/2001/04/xmldsig-more#rsa-sha256``, an XML element carrying an
        ``Algorithm`` attribute (``ds:SignatureMethod``, ``ds:DigestMethod``), or ``None``.
    :returns:
        SHA256, SHA384 or SHA512 when the identifier ends in ``sha256``, ``sha384`` or ``sha512`` (optionally
        preceded by ``rsa-``, case-insensitive); :attr:`DigestAlgorithm.SHA1` in every other case.
    """
    log = log or logger
    algorithm = _algorithm_identifier(source)
    log.debug("Algorithm: %s", algorithm)
    match = algorithm_size_regexp.search(algorithm) if algorithm else None
    digest_algorithm = digest_algorithms_by_size.get(match.group(1)) if match else None
    if digest_algorithm is None:
        log.debug("Request using default SHA1")
        return DigestAlgorithm.SHA1
    log.debug("Request signed with %s", digest_algorithm.name)
    return digest_algorithm


def resolve_c14n_method(source, log: Optional[logging.Logger] = None) -> CanonicalizationMethod:
    """
    Map a canonicalization URI (or an element carrying it in its ``Algorithm`` attribute) to a
    :class:`CanonicalizationMethod`. Unknown or absent identifiers resolve to exclusive canonicalization 1.0.
    """
    log = log or logger
    algorithm = _algorithm_identifier(source)
    for method in CanonicalizationMethod:
        if method.value == algorithm:
            break
    else:
        method = CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0
    log.debug("Canonicalization method for %s: %s", algorithm, method.name)
    return method
