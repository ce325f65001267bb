import logging
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional
from urllib.parse import quote_plus

import cryptography.exceptions
from cryptography.hazmat.primitives.asymmetric import ec, rsa, utils
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15
from lxml import etree

from .algorithms import CanonicalizationMethod, DigestAlgorithm, resolve_c14n_method, resolve_digest_algorithm
from .exceptions import (
    CertificateNotRegistered,
    InvalidDigest,
    InvalidInput,
    InvalidSignature,
    KeyValidationError,
    NoCertificateInRequest,
    WrongSignatureAlgorithm,
)
from .processor import XMLSignatureProcessor
from .util import (
    _remove_sig,
    b64decode_lenient,
    build_query,
    certificate_der,
    certificate_fingerprint,
    ensure_bytes,
    load_x509_certificate,
    namespaces,
)


@dataclass(frozen=True)
class ValidationConfiguration:
    """
    A container holding the settings that a signed SAML document is validated against.
    """

    signature_algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    """
    Digest algorithm the signature is required to use. The algorithm declared by the document (``SignatureMethod``) or
    the redirect binding (``SigAlg``) must resolve to this value, otherwise validation fails with
    :class:`samlsig.exceptions.WrongSignatureAlgorithm`. This prevents downgrades to a weaker algorithm chosen by
    whoever produced the message.
    """

    query_quote_via: Callable = quote_plus
    """
    Function used to percent-encode the parameters when rebuilding the signed query string of the HTTP-Redirect
    binding. The default, :func:`urllib.parse.quote_plus`, encodes spaces as ``+``. Use :func:`urllib.parse.quote` if
    the signer encodes them as ``%20``.
    """


class SignedDocument(XMLSignatureProcessor):
    """
    A SAML message (request or response) carrying an XML Signature, parsed once and validated any number of times.

    :param data: The XML document
    :type data: String, bytes, or XML ElementTree Element API compatible object
    :param logger:
        Logger receiving debug-level records about resolved algorithms and canonicalized data. Defaults to the
        ``samlsig.verifier`` logger, which emits nothing unless the application configures logging.
    :param parser:
        Custom XML parser instance to use when parsing **data**. The default parser arguments used by samlsig are:
        ``resolve_entities=False``.
    :raises: :class:`samlsig.exceptions.InvalidInput` if **data** is not well-formed XML
    """

    def __init__(self, data, *, logger: Optional[logging.Logger] = None, parser=None):
        super().__init__(logger=logger)
        self._parser = parser
        self.document = self.get_root(data)

    @property
    def is_request(self) -> bool:
        return etree.QName(self.document).localname != "Response"

    @property
    def message_type(self) -> str:
        """
        Name of the HTTP-Redirect parameter carrying this message: ``SAMLRequest`` or ``SAMLResponse``.
        """
        return "SAMLRequest" if self.is_request else "SAMLResponse"

    @property
    def embedded_certificate(self) -> Optional[str]:
        """
        The Base64 text of the first ``X509Certificate`` element in the document, or ``None`` if there is none. Text
        split by comments inside the element is joined.

        :raises: :class:`samlsig.exceptions.NoCertificateInRequest` if the element is present but empty
        """
        cert_element = self._find(self.document, "X509Certificate", require=False, xpath="descendant-or-self::")
        if cert_element is None:
            return None
        cert_text = "".join(cert_element.itertext())
        if not cert_text.strip():
            raise NoCertificateInRequest(
                "Certificate element present in response (ds:X509Certificate) but evaluating to nil"
            )
        return cert_text

    def signature_algorithm(self, get_params: Optional[Mapping] = None) -> Optional[DigestAlgorithm]:
        """
        Digest algorithm announced by the message: the ``SigAlg`` redirect parameter if given, otherwise the
        ``DigestMethod`` of the first ``Reference``. Returns ``None`` if the document has no references.
        """
        if get_params and get_params.get("SigAlg"):
            return resolve_digest_algorithm(get_params["SigAlg"], log=self.logger)
        reference = self._find(self.document, "Reference", require=False, xpath="descendant-or-self::")
        if reference is None:
            return None
        return resolve_digest_algorithm(self._find(reference, "DigestMethod", require=False), log=self.logger)

    def fingerprint_certificate(self, cert, get_params: Optional[Mapping] = None) -> Optional[str]:
        """
        Fingerprint **cert** with the digest algorithm announced by the message (see :meth:`signature_algorithm`).
        """
        algorithm = self.signature_algorithm(get_params)
        if algorithm is None:
            return None
        return certificate_fingerprint(cert, algorithm)

    def check_embedded_certificate(self, idp_certificate) -> None:
        """
        Compare the certificate embedded in the document (if any) with the trusted certificate, byte for byte.

        The embedded certificate is never used to verify the signature. This check only rejects documents that claim to
        be signed by some other key.

        :raises:
            :class:`samlsig.exceptions.NoCertificateInRequest` if the ``X509Certificate`` element is empty,
            :class:`samlsig.exceptions.CertificateNotRegistered` if it differs from **idp_certificate**
        """
        request_cert = self.embedded_certificate
        if request_cert is None:
            return
        try:
            request_cert_der = b64decode_lenient(request_cert)
        except InvalidInput:
            request_cert_der = None
        if request_cert_der != certificate_der(idp_certificate):
            raise CertificateNotRegistered("Request certificate not valid or registered")

    def validate(
        self,
        idp_certificate,
        get_params: Optional[Mapping] = None,
        *,
        soft: bool = True,
        expect_config: ValidationConfiguration = ValidationConfiguration(),
    ) -> bool:
        """
        Validate the signature of this document against a trusted identity provider certificate.

        If **get_params** carries a non-empty ``Signature``, the signature of the HTTP-Redirect binding is validated
        over the query string rebuilt from those parameters. Otherwise the signature embedded in the document is
        validated: the first ``Signature`` element in document order is authoritative, the digest of every element
        it references is recomputed, and the signature over ``SignedInfo`` is verified.

        .. admonition:: Signatures without references

         A ``SignedInfo`` with no ``Reference`` elements passes digest validation trivially, so a document whose
         signature covers no content is accepted as long as the signature over ``SignedInfo`` itself verifies.
         Applications must check that the elements they trust are the ones that were referenced.

        :param idp_certificate:
            The trusted X.509 certificate, as a :class:`cryptography.x509.Certificate`, PEM, Base64 DER, or DER bytes.
        :param get_params:
            Query parameters of the HTTP-Redirect binding: ``SAMLRequest`` or ``SAMLResponse``, ``RelayState``
            (optional), ``SigAlg``, ``Signature``.
        :param soft:
            If ``True``, return ``False`` on any validation failure. If ``False``, raise the specific
            :class:`samlsig.exceptions.InvalidSignature` subclass instead.
        :param expect_config:
            Expected validation settings. See :class:`ValidationConfiguration`.

        :raises:
            :class:`samlsig.exceptions.InvalidInput` in both modes if the certificate cannot be read or the document
            lacks the elements needed to validate it
        """
        idp_certificate = load_x509_certificate(idp_certificate)
        try:
            self.check_embedded_certificate(idp_certificate)
            if get_params and get_params.get("Signature"):
                self.validate_params_signature(idp_certificate, get_params, expect_config=expect_config)
            else:
                self.validate_embedded_signature(idp_certificate, expect_config=expect_config)
        except InvalidSignature as e:
            if not soft:
                raise
            self.logger.debug("Signature validation failed (%s): %s", e.error_code, e)
            return False
        return True

    def validate_params_signature(
        self,
        idp_certificate,
        get_params: Mapping,
        expect_config: ValidationConfiguration = ValidationConfiguration(),
    ) -> None:
        message_type = self.message_type
        if get_params.get(message_type) is None:
            raise InvalidInput(f"Expected to find {message_type} parameter")
        if get_params.get("SigAlg") is None:
            raise InvalidInput("Expected to find SigAlg parameter")

        signed_string = build_query(
            message_type,
            get_params[message_type],
            get_params.get("RelayState"),
            get_params["SigAlg"],
            quote_via=expect_config.query_quote_via,
        )
        self.logger.debug("Verifying redirect binding signature over %s", signed_string)
        try:
            raw_signature = b64decode_lenient(get_params["Signature"])
        except InvalidInput as e:
            raise KeyValidationError(f"Key validation error: {e}")
        self.verify_signature(
            idp_certificate, get_params["SigAlg"], raw_signature, ensure_bytes(signed_string), expect_config
        )

    def validate_embedded_signature(
        self, idp_certificate, expect_config: ValidationConfiguration = ValidationConfiguration()
    ) -> None:
        signature = self._find(self.document, "Signature", xpath="descendant-or-self::")
        signed_info = self._find(signature, "SignedInfo")
        c14n_method_node = self._find(signed_info, "CanonicalizationMethod", require=False)
        signed_info_c14n = self._c14n(
            signed_info,
            algorithm=resolve_c14n_method(c14n_method_node, log=self.logger),
            inclusive_ns_prefixes=self._get_inclusive_ns_prefixes(c14n_method_node),
        )

        for index, reference in enumerate(self._findall(signed_info, "Reference")):
            self._verify_reference(reference, index)

        signature_value = self._find(signature, "SignatureValue")
        try:
            raw_signature = b64decode_lenient(signature_value.text or "")
        except InvalidInput as e:
            raise KeyValidationError(f"Key validation error: {e}")
        signature_method = self._find(signed_info, "SignatureMethod", require=False)
        self.logger.debug("Verifying embedded signature")
        self.verify_signature(idp_certificate, signature_method, raw_signature, signed_info_c14n, expect_config)

    def verify_signature(
        self,
        idp_certificate,
        signature_algorithm_source,
        raw_signature: bytes,
        signed_data: bytes,
        expect_config: ValidationConfiguration = ValidationConfiguration(),
    ) -> None:
        """
        Verify **raw_signature** over **signed_data** with the public key of the trusted certificate.

        :param signature_algorithm_source: Algorithm URI or ``SignatureMethod`` element, see
            :func:`samlsig.resolve_digest_algorithm`.
        :raises:
            :class:`samlsig.exceptions.WrongSignatureAlgorithm` if the algorithm differs from the configured one,
            :class:`samlsig.exceptions.KeyValidationError` if the signature does not verify
        """
        public_key = load_x509_certificate(idp_certificate).public_key()
        signature_alg = resolve_digest_algorithm(signature_algorithm_source, log=self.logger)

        if signature_alg is not expect_config.signature_algorithm:
            raise WrongSignatureAlgorithm(
                f"Signature Algorithm needs to be {expect_config.signature_algorithm.name}, got {signature_alg.name}"
            )

        if not isinstance(public_key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
            raise KeyValidationError(f"Unsupported public key type {type(public_key).__name__}")

        try:
            self._verify_signature_with_pubkey(public_key, raw_signature, signed_data, signature_alg)
        except (cryptography.exceptions.InvalidSignature, ValueError):
            raise KeyValidationError("Key validation error")

    def _verify_signature_with_pubkey(self, key, raw_signature: bytes, signed_data: bytes, signature_alg):
        hash_alg = signature_alg.implementation()
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(self._encode_dss_signature(raw_signature, key.key_size), signed_data, ec.ECDSA(hash_alg))
        else:
            key.verify(raw_signature, signed_data, PKCS1v15(), hash_alg)

    def _encode_dss_signature(self, raw_signature: bytes, key_size_bits: int) -> bytes:
        # XML Signature carries ECDSA signatures as the concatenation r || s. Anything else is assumed to be DER.
        int_len = (key_size_bits + 7) // 8
        if len(raw_signature) != int_len * 2:
            return raw_signature
        r = int.from_bytes(raw_signature[:int_len], "big")
        s = int.from_bytes(raw_signature[int_len:], "big")
        return utils.encode_dss_signature(r, s)

    def _get_inclusive_ns_prefixes(self, node) -> List[str]:
        if node is None:
            return []
        inclusive_namespaces = node.find("./ec:InclusiveNamespaces[@PrefixList]", namespaces=namespaces)
        if inclusive_namespaces is None:
            return []
        return inclusive_namespaces.get("PrefixList").split()

    def _get_c14n_transform(self, reference):
        transforms_node = self._find(reference, "Transforms", require=False)
        if transforms_node is None:
            return None
        c14n_uris = {method.value for method in CanonicalizationMethod}
        for transform in self._findall(transforms_node, "Transform"):
            if transform.get("Algorithm") in c14n_uris:
                return transform
        return None

    def _verify_reference(self, reference, index):
        uri = reference.get("URI")
        # Work on a copy so the enveloped signature can be removed without touching self.document.
        copied_root = self._copy(self.document)
        payload = self._resolve_reference(copied_root, uri)
        copied_signature = self._find(copied_root, "Signature", xpath="descendant-or-self::")
        if any(ancestor is payload for ancestor in copied_signature.iterancestors()):
            _remove_sig(copied_signature)

        c14n_transform = self._get_c14n_transform(reference)
        payload_c14n = self._c14n(
            payload,
            algorithm=resolve_c14n_method(c14n_transform, log=self.logger),
            inclusive_ns_prefixes=self._get_inclusive_ns_prefixes(c14n_transform),
        )
        digest_alg = resolve_digest_algorithm(self._find(reference, "DigestMethod", require=False), log=self.logger)

        digest_value = self._find(reference, "DigestValue", require=False)
        try:
            expected_digest = b64decode_lenient(digest_value.text or "") if digest_value is not None else None
        except InvalidInput:
            expected_digest = None
        if self._get_digest(payload_c14n, digest_alg) != expected_digest:
            raise InvalidDigest(f"Digest mismatch for reference {index} ({uri})")
