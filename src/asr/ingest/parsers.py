"""
Record Parsers

Bibliographic source readers used by the ingestion stage. Each parser turns
one file into Record objects; entries without a title are skipped.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from asr.core.exceptions import RecordParsingError
from asr.core.schemas import Record
from asr.screening.oracles import RecordParser

logger = logging.getLogger(__name__)

_YEAR = re.compile(r"\d{4}")
_CITATION_YEAR = re.compile(r"\b(?:19|20)\d{2}\b")


def _parse_year(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    match = _YEAR.search(str(value))
    return int(match.group(0)) if match else None


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _build_record(fields: dict[str, Any], source_file: str) -> Record | None:
    title = (fields.get("title") or "").strip()
    if not title:
        return None
    try:
        return Record(
            title=title,
            authors=tuple(_as_list(fields.get("authors"))),
            year=_parse_year(fields.get("year")),
            venue=fields.get("venue") or "",
            external_id=fields.get("external_id") or None,
            abstract=fields.get("abstract") or None,
            keywords=tuple(_as_list(fields.get("keywords"))) or None,
            url=fields.get("url") or None,
            source_file=source_file,
        )
    except PydanticValidationError as e:
        logger.warning("Skipping invalid record %r in %s: %s", title[:60], source_file, e)
        return None


class JsonRecordParser:
    """
    Reads a JSON array of records, or an object with a ``records`` array.

    Accepted keys per record: title, authors, year, venue (or journal),
    external_id (or doi), abstract, keywords, url.
    """

    suffixes = (".json",)

    def parse(self, path: Path) -> list[Record]:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RecordParsingError(f"Cannot read JSON records: {e}", str(path)) from e

        if isinstance(data, dict):
            data = data.get("records")
        if not isinstance(data, list):
            raise RecordParsingError("Expected a list of records", str(path))

        records = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            fields = dict(entry)
            fields.setdefault("venue", entry.get("journal"))
            fields.setdefault("external_id", entry.get("doi"))
            record = _build_record(fields, Path(path).name)
            if record is not None:
                records.append(record)
        return records


class RisRecordParser:
    """Reads tagged RIS exports (EndNote, Zotero, RefWorks)."""

    suffixes = (".ris",)

    _TAG_LINE = re.compile(r"^([A-Z][A-Z0-9])  -\s?(.*)$")
    _MULTI_VALUE = {"AU", "A1", "KW"}

    def parse(self, path: Path) -> list[Record]:
        try:
            content = Path(path).read_text(encoding="utf-8-sig")
        except OSError as e:
            raise RecordParsingError(f"Cannot read RIS file: {e}", str(path)) from e

        records = []
        for tags in self._split_entries(content):
            fields = {
                "title": self._first(tags, "TI", "T1"),
                "authors": tags.get("AU") or tags.get("A1") or [],
                "year": self._first(tags, "PY", "Y1"),
                "venue": self._first(tags, "JO", "JF", "T2"),
                "external_id": self._first(tags, "DO"),
                "abstract": self._first(tags, "AB", "N2"),
                "keywords": tags.get("KW"),
                "url": self._first(tags, "UR"),
            }
            record = _build_record(fields, Path(path).name)
            if record is not None:
                records.append(record)
        return records

    def _split_entries(self, content: str) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        current: dict[str, Any] = {}
        for line in content.splitlines():
            match = self._TAG_LINE.match(line.rstrip())
            if not match:
                continue
            tag, value = match.group(1), match.group(2).strip()
            if tag == "TY" and current:
                entries.append(current)
                current = {}
            if tag == "ER":
                if current:
                    entries.append(current)
                current = {}
                continue
            if tag in self._MULTI_VALUE:
                current.setdefault(tag, []).append(value)
            elif tag not in current:
                current[tag] = value
        if current:
            entries.append(current)
        return entries

    @staticmethod
    def _first(tags: dict[str, Any], *names: str) -> str | None:
        for name in names:
            if tags.get(name):
                return tags[name]
        return None


class MedlineRecordParser:
    """
    Reads PubMed MEDLINE (``.nbib``) exports.

    Tags are padded to four characters and continuation lines are indented.
    ``.txt`` files without any MEDLINE tag fall back to loose citation
    parsing, one citation per paragraph or numbered entry.
    """

    suffixes = (".nbib", ".medline", ".txt")

    _TAG_LINE = re.compile(r"^([A-Z]{2,4})\s*- (.*)$")
    _CONTINUATION = re.compile(r"^\s{2,}\S")

    def __init__(self, fallback: CitationTextRecordParser | None = None):
        self.fallback = fallback or CitationTextRecordParser()

    def parse(self, path: Path) -> list[Record]:
        try:
            content = Path(path).read_text(encoding="utf-8-sig")
        except OSError as e:
            raise RecordParsingError(f"Cannot read MEDLINE file: {e}", str(path)) from e

        entries = self._split_entries(content)
        if not entries:
            if Path(path).suffix.lower() == ".txt":
                logger.info("No MEDLINE tags in %s, reading as plain citations", Path(path).name)
                return self.fallback.parse_text(content, Path(path).name)
            return []

        records = []
        for tags in entries:
            pmid = self._first(tags, "PMID")
            fields = {
                "title": self._first(tags, "TI", "TT"),
                "authors": tags.get("AU") or tags.get("FAU") or [],
                "year": self._first(tags, "DP"),
                "venue": self._first(tags, "JT", "TA"),
                "external_id": self._doi(tags),
                "abstract": self._first(tags, "AB"),
                "keywords": tags.get("OT") or tags.get("MH"),
                "url": f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/" if pmid else None,
            }
            record = _build_record(fields, Path(path).name)
            if record is not None:
                records.append(record)
        return records

    def _split_entries(self, content: str) -> list[dict[str, list[str]]]:
        entries: list[dict[str, list[str]]] = []
        current: dict[str, list[str]] = {}
        tag = None
        for line in content.splitlines():
            if not line.strip():
                if current:
                    entries.append(current)
                current, tag = {}, None
                continue
            match = self._TAG_LINE.match(line)
            if match:
                tag = match.group(1)
                if tag == "PMID" and current:
                    entries.append(current)
                    current = {}
                current.setdefault(tag, []).append(match.group(2).strip())
            elif tag is not None and self._CONTINUATION.match(line):
                values = current[tag]
                values[-1] = f"{values[-1]} {line.strip()}"
        if current:
            entries.append(current)
        return entries

    @staticmethod
    def _first(tags: dict[str, list[str]], *names: str) -> str | None:
        for name in names:
            if tags.get(name):
                return tags[name][0]
        return None

    @staticmethod
    def _doi(tags: dict[str, list[str]]) -> str | None:
        for value in tags.get("LID", []) + tags.get("AID", []):
            if value.endswith("[doi]"):
                return value[: -len("[doi]")].strip()
        return None


class CitationTextRecordParser:
    """Reads free-text reference lists, e.g. a bibliography pasted into a file."""

    suffixes = ()

    _NUMBERING = re.compile(r"^(?:\d+[.)]|\[\d+\])\s*")
    _DOI = re.compile(r"\b(10\.\d{4,9}/[^\s,;]+)", re.IGNORECASE)
    _QUOTED = re.compile(r"[\"“]([^\"”]{10,})[\"”]")
    _SENTENCE = re.compile(r"\.\s+")

    def parse(self, path: Path) -> list[Record]:
        try:
            content = Path(path).read_text(encoding="utf-8-sig")
        except OSError as e:
            raise RecordParsingError(f"Cannot read citation file: {e}", str(path)) from e
        return self.parse_text(content, Path(path).name)

    def parse_text(self, content: str, source_file: str) -> list[Record]:
        records = []
        for citation in self._split_citations(content):
            record = _build_record(self._fields(citation), source_file)
            if record is not None:
                records.append(record)
        return records

    def _split_citations(self, content: str) -> list[str]:
        citations: list[str] = []
        current: list[str] = []
        for line in content.splitlines():
            line = line.strip()
            if not line or self._NUMBERING.match(line):
                if current:
                    citations.append(" ".join(current))
                current = [self._NUMBERING.sub("", line)] if line else []
                continue
            current.append(line)
        if current:
            citations.append(" ".join(current))
        return [c for c in citations if len(c) > 10]

    def _fields(self, citation: str) -> dict[str, Any]:
        doi = self._DOI.search(citation)
        year = _CITATION_YEAR.search(citation)
        parts = [p.strip() for p in self._SENTENCE.split(citation) if p.strip()]

        quoted = self._QUOTED.search(citation)
        if quoted:
            title = quoted.group(1).strip()
            authors_part = citation[: quoted.start()]
            venue = None
        elif len(parts) >= 2:
            authors_part, title = parts[0], parts[1]
            venue = parts[2] if len(parts) > 2 and not self._DOI.search(parts[2]) else None
        else:
            authors_part, title, venue = "", citation, None

        authors = [a.strip(" .") for a in re.split(r"[;,]\s+", authors_part) if a.strip(" .")]
        return {
            "title": title.rstrip("."),
            "authors": authors,
            "year": year.group(0) if year else None,
            "venue": venue,
            "external_id": doi.group(1).rstrip(".") if doi else None,
        }


class PubmedXmlRecordParser:
    """Reads PubMed XML exports (``PubmedArticleSet``)."""

    suffixes = (".xml",)

    def parse(self, path: Path) -> list[Record]:
        try:
            root = ET.parse(Path(path)).getroot()
        except (OSError, ET.ParseError) as e:
            raise RecordParsingError(f"Cannot read PubMed XML: {e}", str(path)) from e

        articles = [root] if root.tag == "PubmedArticle" else root.findall(".//PubmedArticle")
        records = []
        for article in articles:
            record = _build_record(self._fields(article), Path(path).name)
            if record is not None:
                records.append(record)
        return records

    def _fields(self, article: ET.Element) -> dict[str, Any]:
        citation = article.find("MedlineCitation")
        if citation is None:
            return {}
        article_elem = citation.find("Article")
        if article_elem is None:
            return {}

        abstract_parts = []
        for abstract in article_elem.findall("Abstract/AbstractText"):
            text = _element_text(abstract)
            label = abstract.get("Label")
            if text:
                abstract_parts.append(f"{label}: {text}" if label else text)

        authors = []
        for author in article_elem.findall("AuthorList/Author"):
            last = author.findtext("LastName", "")
            initials = author.findtext("Initials", "") or author.findtext("ForeName", "")
            if last:
                authors.append(f"{last} {initials}".strip())
            elif author.findtext("CollectiveName"):
                authors.append(author.findtext("CollectiveName").strip())

        pub_date = article_elem.find("Journal/JournalIssue/PubDate")
        year = None
        if pub_date is not None:
            year = pub_date.findtext("Year") or pub_date.findtext("MedlineDate")

        doi = None
        for elem in article_elem.findall("ELocationID") + article.findall("PubmedData/ArticleIdList/ArticleId"):
            if (elem.get("EIdType") or elem.get("IdType")) == "doi" and elem.text:
                doi = elem.text.strip()
                break

        pmid = citation.findtext("PMID")
        keywords = [kw for kw in (_element_text(k) for k in citation.findall("KeywordList/Keyword")) if kw]
        if not keywords:
            keywords = [m.text for m in citation.findall("MeshHeadingList/MeshHeading/DescriptorName") if m.text]

        title_elem = article_elem.find("ArticleTitle")
        return {
            "title": _element_text(title_elem) if title_elem is not None else None,
            "authors": authors,
            "year": year,
            "venue": article_elem.findtext("Journal/Title") or article_elem.findtext("Journal/ISOAbbreviation"),
            "external_id": doi,
            "abstract": " ".join(abstract_parts) or None,
            "keywords": keywords,
            "url": f"https://pubmed.ncbi.nlm.nih.gov/{pmid.strip()}/" if pmid else None,
        }


def _element_text(elem: ET.Element) -> str:
    """Element text including inline markup such as <i> or <sup>."""
    return " ".join("".join(elem.itertext()).split())


DEFAULT_PARSERS: tuple[RecordParser, ...] = (
    JsonRecordParser(),
    RisRecordParser(),
    MedlineRecordParser(),
    PubmedXmlRecordParser(),
)


def parser_for(path: Path, parsers: tuple[RecordParser, ...] = DEFAULT_PARSERS) -> RecordParser:
    """Pick the parser registered for the file's suffix."""
    suffix = Path(path).suffix.lower()
    for parser in parsers:
        if suffix in getattr(parser, "suffixes", ()):
            return parser
    raise RecordParsingError(f"No parser for '{suffix}' files", str(path))


def parse_sources(
    paths: list[Path], parsers: tuple[RecordParser, ...] = DEFAULT_PARSERS
) -> list[Record]:
    """Parse every source file, preserving file order then entry order."""
    records: list[Record] = []
    for path in paths:
        parsed = parser_for(path, parsers).parse(Path(path))
        logger.info("Parsed %d records from %s", len(parsed), Path(path).name)
        records.extend(parsed)
    return records
