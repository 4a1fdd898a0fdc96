"""Normalization of uploaded bytes into plain/markdown text."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any

from knowledge_search.types import ParsedDocument, StoredDocument


class Parser(ABC):
    """Base parser interface used by the normalizer."""

    extensions: tuple[str, ...] = ()
    content_types: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, document: StoredDocument) -> ParsedDocument:
        """Turn raw document bytes into normalized text + metadata."""


class TextParser(Parser):
    """Pass-through parser for documents that are already text."""

    extensions = (".txt", ".log", ".csv", ".md", ".markdown")
    content_types = ("text/plain", "text/markdown", "text/csv")

    def parse(self, document: StoredDocument) -> ParsedDocument:
        suffix = PurePath(document.filename).suffix.lower()
        return ParsedDocument(
            document_id=document.document_id,
            filename=document.filename,
            text=_decode(document.content),
            metadata={
                "filename": document.filename,
                "format": "markdown" if suffix in (".md", ".markdown") else "text",
            },
        )


class JsonParser(Parser):
    """Parser for JSON documents with deterministic normalization."""

    extensions = (".json",)
    content_types = ("application/json",)

    def parse(self, document: StoredDocument) -> ParsedDocument:
        payload: Any = json.loads(_decode(document.content))
        metadata: dict[str, Any] = {"filename": document.filename, "format": "json"}
        if isinstance(payload, dict):
            text = json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)
            metadata["keys"] = sorted(payload.keys())
        elif isinstance(payload, list):
            text = json.dumps(payload, ensure_ascii=False, indent=2)
            metadata["length"] = len(payload)
        else:
            text = str(payload)
        return ParsedDocument(
            document_id=document.document_id,
            filename=document.filename,
            text=text,
            metadata=metadata,
        )


class PlaceholderParser(Parser):
    """Fallback for formats without a real extractor: wraps the name in a heading."""

    def parse(self, document: StoredDocument) -> ParsedDocument:
        text = f"# {document.filename}\n\nConverted content of {document.filename}"
        return ParsedDocument(
            document_id=document.document_id,
            filename=document.filename,
            text=text,
            metadata={"filename": document.filename, "format": "placeholder"},
        )


class Normalizer:
    """Maps file extension (then MIME type) to a parser implementation."""

    def __init__(
        self,
        parsers: list[Parser] | None = None,
        fallback: Parser | None = None,
    ) -> None:
        self._by_extension: dict[str, Parser] = {}
        self._by_content_type: dict[str, Parser] = {}
        self._fallback = fallback or PlaceholderParser()
        for parser in parsers or [TextParser(), JsonParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._by_extension[extension.lower()] = parser
        for content_type in parser.content_types:
            self._by_content_type[content_type.lower()] = parser

    def parser_for(self, filename: str, content_type: str | None = None) -> Parser:
        parser = self._by_extension.get(PurePath(filename).suffix.lower())
        if parser is not None:
            return parser
        if content_type:
            mime = content_type.split(";", 1)[0].strip().lower()
            parser = self._by_content_type.get(mime)
            if parser is not None:
                return parser
            if mime.startswith("text/"):
                return self._by_content_type.get("text/plain", self._fallback)
        return self._fallback

    def normalize(self, document: StoredDocument) -> ParsedDocument:
        parser = self.parser_for(document.filename, document.content_type)
        return parser.parse(document)


def _decode(content: bytes) -> str:
    return content.decode("utf-8-sig", errors="replace")
