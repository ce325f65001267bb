"""
samlsig utility functions
"""

import binascii
import textwrap
from base64 import b64decode
from typing import Callable, Optional
from urllib.parse import quote_plus

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from ..algorithms import DigestAlgorithm
from ..exceptions import InvalidInput

PEM_HEADER = "-----BEGIN CERTIFICATE-----"
PEM_FOOTER = "-----END CERTIFICATE-----"


class Namespace(dict):
    def __getattr__(self, a):
        return dict.__getitem__(self, a)


namespaces = Namespace(
    ds="http://www.w3.org/2000/09/xmldsig#",
    ec="http://www.w3.org/2001/10/xml-exc-c14n#",
    samlp="urn:oasis:names:tc:SAML:2.0:protocol",
    saml="urn:oasis:names:tc:SAML:2.0:assertion",
)


def ensure_bytes(x, encoding="utf-8"):
    if not isinstance(x, bytes):
        x = x.encode(encoding)
    return x


def ensure_str(x, encoding="utf-8"):
    if not isinstance(x, str):
        x = x.decode(encoding)
    return x


def b64decode_lenient(data) -> bytes:
    """
    Decode Base64 text the way it appears in XML (wrapped lines, surrounding whitespace).
    """
    try:
        return b64decode("".join(ensure_str(data).split()))
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidInput(f"Unable to decode Base64 value: {e}")


def add_pem_header(bare_base64_cert):
    bare_base64_cert = ensure_str(bare_base64_cert)
    if bare_base64_cert.startswith(PEM_HEADER):
        return bare_base64_cert
    bare_base64_cert = "".join(bare_base64_cert.split())
    return PEM_HEADER + "\n" + textwrap.fill(bare_base64_cert, 64) + "\n" + PEM_FOOTER


def load_x509_certificate(cert) -> x509.Certificate:
    """
    Load a trusted certificate.

    :param cert:
        A :class:`cryptography.x509.Certificate`, a PEM-formatted certificate, bare Base64-encoded DER (as found in
        SAML metadata), or raw DER bytes.
    :raises: :class:`samlsig.exceptions.InvalidInput` if the certificate cannot be read
    """
    if isinstance(cert, x509.Certificate):
        return cert
    try:
        if isinstance(cert, bytes) and cert.startswith(b"\x30"):
            return x509.load_der_x509_certificate(cert)
        return x509.load_pem_x509_certificate(ensure_bytes(add_pem_header(cert.strip())))
    except (ValueError, TypeError, UnicodeDecodeError, AttributeError) as e:
        raise InvalidInput(f"Unable to load X.509 certificate: {e}")


def certificate_der(cert) -> bytes:
    return load_x509_certificate(cert).public_bytes(Encoding.DER)


def certificate_fingerprint(cert, algorithm: DigestAlgorithm = DigestAlgorithm.SHA1) -> str:
    """
    Return the hex-encoded fingerprint of a certificate, computed over its DER encoding.
    """
    return load_x509_certificate(cert).fingerprint(algorithm.implementation()).hex()


def build_query(
    message_type: str,
    data: str,
    relay_state: Optional[str],
    sig_alg: str,
    quote_via: Callable = quote_plus,
) -> str:
    """
    Rebuild the query string signed in the SAML HTTP-Redirect binding.

    The parameter order is fixed: the message (``SAMLRequest`` or ``SAMLResponse``), then ``RelayState`` if present,
    then ``SigAlg``. Each value is percent-encoded with **quote_via** (``urllib.parse.quote_plus`` by default, which
    encodes spaces as ``+``; pass ``urllib.parse.quote`` for ``%20``).
    """
    url_string = f"{message_type}={quote_via(data, safe='')}"
    if relay_state is not None:
        url_string += f"&RelayState={quote_via(relay_state, safe='')}"
    url_string += f"&SigAlg={quote_via(sig_alg, safe='')}"
    return url_string


def _remove_sig(signature):
    """
    Remove the signature node from its parent, keeping any tail text.
    This is needed for enveloped signatures.

    :param signature: Signature to remove from payload
    :type signature: XML ElementTree Element
    """
    signaturep = signature.getparent()
    if signature.tail is not None:
        try:
            signatures = next(signature.itersiblings(preceding=True))
        except StopIteration:
            if signaturep.text is not None:
                signaturep.text = signaturep.text + signature.tail
            else:
                signaturep.text = signature.tail
        else:
            if signatures.tail is not None:
                signatures.tail = signatures.tail + signature.tail
            else:
                signatures.tail = signature.tail
    signaturep.remove(signature)
