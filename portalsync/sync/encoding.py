"""
Character encoding normalization for HTML served by the legacy portal.

The portal is not consistent about encodings: the Content-Type header and the
document's own <meta http-equiv="content-type"> often disagree, and pages
labelled as Latin-1 are sometimes UTF-8. Every HTML body leaves this module
as UTF-8 bytes labelled `text/html;charset=utf-8`.
"""

import codecs
from typing import Optional, Tuple

from bs4 import BeautifulSoup

from ..config import get_logger
from .error_tracker import DocumentDecodeError

logger = get_logger(__name__)

LATIN1_HTML = "text/html;charset=iso-8859-1"
UTF8_HTML = "text/html;charset=utf-8"
# Default for HTML up to 4.x when no charset is declared
BARE_HTML = "text/html"


def canonical_content_type(value: Optional[str]) -> str:
    """Lower-case a content type and strip whitespace and quotes."""
    if not value:
        return ""
    return value.lower().replace(" ", "").replace("\t", "").replace('"', "").replace("'", "")


def charset_of(content_type: str) -> Optional[str]:
    """Return the charset parameter of a canonical content type, if any."""
    for part in content_type.split(";")[1:]:
        if part.startswith("charset="):
            return part[len("charset="):] or None
    return None


def _codec_name(charset: Optional[str]) -> Optional[str]:
    if not charset:
        return None
    try:
        return codecs.lookup(charset).name
    except LookupError:
        return None


class EncodingNormalizer:
    """Decodes HTML bodies with the right charset and re-encodes them as UTF-8."""

    def normalize(self, header_content_type: str, raw_body: bytes) -> Tuple[bytes, str]:
        """
        Normalize an HTML body.

        Args:
            header_content_type: Content-Type header of the response
            raw_body: Undecoded response body

        Returns:
            Tuple of (utf-8 body, "text/html;charset=utf-8")
        """
        header_type = canonical_content_type(header_content_type)
        if header_type in (BARE_HTML, LATIN1_HTML):
            charset = "iso-8859-1"
            header_type = LATIN1_HTML
        else:
            charset = charset_of(header_type) or "utf-8"

        text = self._decode(raw_body, charset, header_type)

        document_type = self.document_content_type(text)
        if document_type is None:
            logger.warning(f"missing content type in body, using header {header_type}")
            document_type = header_type

        if document_type != header_type:
            if _codec_name(charset_of(document_type)) == "utf-8" and header_type == LATIN1_HTML:
                text = self._repair_mislabelled_latin1(raw_body)
            else:
                logger.warning(f"different content type (header {header_type}, body {document_type}), leaving header decoding in place")

        return text.encode("utf-8"), UTF8_HTML

    def document_content_type(self, text: str) -> Optional[str]:
        """Content type the document declares in <meta http-equiv="content-type">, or None."""
        soup = BeautifulSoup(text, "html.parser")
        content_type = None
        for meta in soup.find_all("meta"):
            http_equiv = meta.get("http-equiv")
            if http_equiv and http_equiv.strip().lower() == "content-type":
                content = meta.get("content")
                if content:
                    content_type = canonical_content_type(content)
        return content_type or None

    def _decode(self, raw_body: bytes, charset: str, header_type: str) -> str:
        try:
            codecs.lookup(charset)
        except LookupError:
            raise DocumentDecodeError(f"unknown charset '{charset}' in content type {header_type}")
        return raw_body.decode(charset, errors="replace")

    def _repair_mislabelled_latin1(self, raw_body: bytes) -> str:
        """
        Header says Latin-1, document says UTF-8. Bytes that are valid UTF-8
        are taken at the document's word; otherwise every byte is its own
        code point.
        """
        try:
            return raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return raw_body.decode("iso-8859-1")
