"""Structured-document parsing used by intent mapping."""

from patchgate.parsing.ls_document import (
    Document,
    DocumentParser,
    LsDocumentParser,
    ParseResult,
    parse_ls_document,
)

__all__ = ["Document", "DocumentParser", "LsDocumentParser", "ParseResult", "parse_ls_document"]
