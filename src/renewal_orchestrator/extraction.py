"""Recover tagged documents and free-form commentary from generated text.

Documents are wrapped in ``<artifact>`` / ``</artifact>`` markers. The start
marker may carry attributes, of which ``id`` names the document and
``title``/``name`` label it::

    Here are the drafts.
    <artifact id="travelers"># Submission to Travelers ...</artifact>
    <artifact id="chubb"># Submission to Chubb ...</artifact>

Everything outside the markers is commentary for the conversation log.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MIN_DOCUMENT_LENGTH = 100

_BLOCK_RE = re.compile(r"<artifact(?P<attrs>\s[^>]*)?>(?P<body>.*?)</artifact>", re.DOTALL)
_LAX_BLOCK_RE = re.compile(
    r"<\s*artifact\b(?P<attrs>[^>]*)>(?P<body>.*?)<\s*/\s*artifact\s*>",
    re.DOTALL | re.IGNORECASE,
)
_FENCED_BLOCK_RE = re.compile(r"```artifact[^\n]*\n(?P<body>.*?)\n?```", re.DOTALL)
_WRAPPER_RE = re.compile(r"<\s*/?\s*artifacts\s*>", re.IGNORECASE)
_STRAY_TAG_RE = re.compile(r"<\s*/?\s*artifact\b[^>\n]*>?", re.IGNORECASE)
_ATTR_RE = re.compile(r"""(?P<key>[\w-]+)\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)')""")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

_OPEN_MARKER = "<artifact"
_CLOSE_MARKER = "</artifact>"
_CLOSE_PREFIX = "</artifact"


@dataclass(frozen=True)
class ExtractedDocument:
    body: str
    id: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class ExtractionResult:
    documents: list[ExtractedDocument]
    commentary: str

    @property
    def has_document(self) -> bool:
        return bool(self.documents)


def extract_artifacts(text: str, *, min_length: int = MIN_DOCUMENT_LENGTH) -> ExtractionResult:
    """Split generated text into documents and commentary.

    Bodies shorter than ``min_length`` are dropped. When the strict marker
    pattern yields nothing, one laxer single-document pattern is tried.
    Unterminated markers never raise; they just produce no document.
    """
    documents = [
        document
        for document in (_document_from_match(match) for match in _BLOCK_RE.finditer(text))
        if len(document.body) >= min_length
    ]
    if not documents:
        fallback = _lax_single_document(text)
        if fallback is not None and len(fallback.body) >= min_length:
            documents = [fallback]
    return ExtractionResult(documents=documents, commentary=strip_artifacts(text))


def strip_artifacts(text: str) -> str:
    """Remove every document block and marker tag, leaving only commentary."""
    residual = _BLOCK_RE.sub("", text)
    residual = _LAX_BLOCK_RE.sub("", residual)
    residual = _FENCED_BLOCK_RE.sub("", residual)
    residual = _WRAPPER_RE.sub("", residual)
    residual = _STRAY_TAG_RE.sub("", residual)
    return _BLANK_LINES_RE.sub("\n\n", residual).strip()


def has_artifacts(text: str) -> bool:
    return _STRAY_TAG_RE.search(_WRAPPER_RE.sub("", text)) is not None


def _lax_single_document(text: str) -> ExtractedDocument | None:
    match = _LAX_BLOCK_RE.search(text)
    if match is not None:
        return _document_from_match(match)
    fenced = _FENCED_BLOCK_RE.search(text)
    if fenced is not None:
        return ExtractedDocument(body=fenced.group("body").strip())
    return None


def _document_from_match(match: re.Match[str]) -> ExtractedDocument:
    attrs = _parse_attributes(match.group("attrs") or "")
    return ExtractedDocument(
        body=match.group("body").strip(),
        id=attrs.get("id") or None,
        title=attrs.get("title") or attrs.get("name") or None,
    )


def _parse_attributes(raw: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for match in _ATTR_RE.finditer(raw):
        value = match.group("dq") if match.group("dq") is not None else match.group("sq")
        attrs[match.group("key").lower()] = value or ""
    return attrs


@dataclass(frozen=True)
class StreamUpdate:
    """What one chunk contributed: new commentary, finished documents, live preview."""

    commentary: str
    documents: list[ExtractedDocument]
    open_document: str | None = None


@dataclass
class _OpenDocument:
    attrs: dict[str, str]
    parts: list[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        return "".join(self.parts)


class StreamingArtifactExtractor:
    """Incremental extraction for a streamed chat reply.

    Marker state is carried across chunks, so a chunk may end in the middle of
    a tag or a document. ``close()`` treats a still-open document as closed.
    One instance handles one message; call ``reset()`` before reusing it.
    """

    def __init__(self, *, min_length: int = MIN_DOCUMENT_LENGTH) -> None:
        self.min_length = min_length
        self.reset()

    def reset(self) -> None:
        self._buffer = ""
        self._open: _OpenDocument | None = None
        self._commentary: list[str] = []
        self._documents: list[ExtractedDocument] = []
        self._closed = False

    @property
    def commentary(self) -> str:
        return _BLANK_LINES_RE.sub("\n\n", "".join(self._commentary)).strip()

    @property
    def documents(self) -> list[ExtractedDocument]:
        return list(self._documents)

    def feed(self, chunk: str) -> StreamUpdate:
        if self._closed:
            raise RuntimeError("Extractor is closed; call reset() to start a new message")
        self._buffer += chunk
        return self._drain(final=False)

    def close(self) -> StreamUpdate:
        update = self._drain(final=True)
        documents = list(update.documents)
        if self._open is not None:
            document = self._finish(self._open)
            self._open = None
            if document is not None:
                documents.append(document)
        self._closed = True
        return StreamUpdate(commentary=update.commentary, documents=documents)

    def _drain(self, *, final: bool) -> StreamUpdate:
        commentary: list[str] = []
        finished: list[ExtractedDocument] = []
        while True:
            if self._open is None:
                if not self._drain_outside(commentary, final=final):
                    break
            else:
                document, progressed = self._drain_inside(self._open, final=final)
                if document is not None:
                    finished.append(document)
                if not progressed:
                    break
        text = "".join(commentary)
        self._commentary.append(text)
        return StreamUpdate(
            commentary=text,
            documents=finished,
            open_document=self._open.body if self._open is not None else None,
        )

    def _drain_outside(self, commentary: list[str], *, final: bool) -> bool:
        """Consume commentary up to the next tag; return True if a tag was consumed."""
        buffer = self._buffer
        start = _next_tag(buffer)
        if start == -1:
            keep = 0 if final else _held_suffix(buffer)
            commentary.append(buffer[: len(buffer) - keep])
            self._buffer = buffer[len(buffer) - keep :]
            return False

        commentary.append(buffer[:start])
        end = buffer.find(">", start)
        if end == -1:
            # Tag not complete yet; drop it if the stream is over.
            self._buffer = "" if final else buffer[start:]
            return False

        tag = buffer[start : end + 1]
        self._buffer = buffer[end + 1 :]
        if tag.startswith(_OPEN_MARKER):
            following = tag[len(_OPEN_MARKER) : len(_OPEN_MARKER) + 1]
            if following in (">", "") or following.isspace():
                self._open = _OpenDocument(attrs=_parse_attributes(tag[len(_OPEN_MARKER) : -1]))
            elif following != "s":
                # Not a marker after all ("<artifactual>"), keep it as text.
                commentary.append(tag)
        elif tag[len(_CLOSE_PREFIX) :].strip() not in (">", "s>"):
            # Stray "</artifact>" and "</artifacts>" go; "</artifactual>" stays.
            commentary.append(tag)
        return True

    def _drain_inside(
        self, open_document: _OpenDocument, *, final: bool
    ) -> tuple[ExtractedDocument | None, bool]:
        buffer = self._buffer
        end = buffer.find(_CLOSE_MARKER)
        if end == -1:
            # A partial close marker is held back; at stream end it is dropped.
            keep = _partial_suffix(buffer, _CLOSE_MARKER)
            open_document.parts.append(buffer[: len(buffer) - keep])
            self._buffer = "" if final else buffer[len(buffer) - keep :]
            return None, False
        open_document.parts.append(buffer[:end])
        self._buffer = buffer[end + len(_CLOSE_MARKER) :]
        document = self._finish(open_document)
        self._open = None
        return document, True

    def _finish(self, open_document: _OpenDocument) -> ExtractedDocument | None:
        body = open_document.body.strip()
        if len(body) < self.min_length:
            return None
        document = ExtractedDocument(
            body=body,
            id=open_document.attrs.get("id") or None,
            title=open_document.attrs.get("title") or open_document.attrs.get("name") or None,
        )
        self._documents.append(document)
        return document


def _next_tag(buffer: str) -> int:
    positions = (buffer.find(_OPEN_MARKER), buffer.find(_CLOSE_PREFIX))
    candidates = [index for index in positions if index != -1]
    return min(candidates) if candidates else -1


def _held_suffix(buffer: str) -> int:
    return max(_partial_suffix(buffer, _OPEN_MARKER), _partial_suffix(buffer, _CLOSE_PREFIX))


def _partial_suffix(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""
    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0
