import logging
from typing import Optional, Tuple
from xml.etree import ElementTree as stdlibElementTree

from cryptography.hazmat.primitives.hashes import Hash
from lxml import etree

from .algorithms import CanonicalizationMethod, DigestAlgorithm
from .exceptions import InvalidDigest, InvalidInput
from .util import ensure_bytes, namespaces


class XMLProcessor:
    _default_parser, _parser = None, None

    @property
    def parser(self):
        if self._parser is None:
            if self._default_parser is None:
                self._default_parser = etree.XMLParser(resolve_entities=False)
            return self._default_parser
        return self._parser

    def _fromstring(self, xml_string, **kwargs):
        try:
            xml_node = etree.fromstring(xml_string, parser=self.parser, **kwargs)
        except etree.XMLSyntaxError as e:
            raise InvalidInput(f"Unable to parse XML document: {e}") from e
        for entity in xml_node.iter(etree.Entity):
            raise InvalidInput("Entities are not supported in XML input")
        return xml_node

    def _tostring(self, xml_node, **kwargs):
        return etree.tostring(xml_node, **kwargs)

    def _copy(self, xml_node):
        # Serialize and reparse instead of copy.deepcopy, which does not carry namespace declarations inherited from
        # ancestors of the copied node.
        return self._fromstring(self._tostring(xml_node))

    def get_root(self, data):
        if isinstance(data, (str, bytes)):
            return self._fromstring(ensure_bytes(data))
        elif isinstance(data, stdlibElementTree.Element):
            return self._fromstring(stdlibElementTree.tostring(data, encoding="utf-8"))
        else:
            # Parse a separate copy so the caller's tree is never touched.
            return self._copy(data)


class XMLSignatureProcessor(XMLProcessor):
    id_attributes: Tuple[str, ...] = ("ID",)

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(self.__module__)

    def _get_digest(self, data, algorithm: DigestAlgorithm):
        hasher = Hash(algorithm=algorithm.implementation())
        hasher.update(data)
        return hasher.finalize()

    def _findall(self, element, query, xpath="./"):
        # XML-DSig elements are matched both in the ds namespace and unqualified.
        namespace = "ds"
        if ":" in query:
            namespace, _, query = query.partition(":")
        return element.xpath(f"{xpath}{namespace}:{query} | {xpath}{query}", namespaces=namespaces)

    def _find(self, element, query, require=True, xpath="./"):
        results = self._findall(element, query, xpath=xpath)
        if require and len(results) == 0:
            raise InvalidInput(f"Expected to find XML element {query} in {etree.QName(element).localname}")
        return results[0] if results else None

    def _c14n(self, node, algorithm: CanonicalizationMethod, inclusive_ns_prefixes=None):
        exclusive = algorithm.exclusive
        c14n = etree.tostring(
            node,
            method="c14n",
            exclusive=exclusive,
            with_comments=False,
            inclusive_ns_prefixes=inclusive_ns_prefixes if exclusive else None,
        )
        self.logger.debug(
            "Canonicalized string (%s, inclusive_ns_prefixes=%s): %s", algorithm.name, inclusive_ns_prefixes, c14n
        )
        return c14n

    def _resolve_reference(self, doc_root, uri):
        if uri is None:
            raise InvalidDigest("Reference without URI")
        elif uri == "":
            return doc_root
        elif uri.startswith("#") and not uri.startswith("#xpointer("):
            for id_attribute in self.id_attributes:
                results = doc_root.xpath(f"//*[@{id_attribute}=$uri]", uri=uri[1:])
                if len(results) > 1:
                    raise InvalidDigest(f"Ambiguous reference URI {uri} resolved to {len(results)} nodes")
                elif len(results) == 1:
                    return results[0]
        raise InvalidDigest(f"Unable to resolve reference URI: {uri}")
