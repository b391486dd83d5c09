"""
Text Enrichment - Concept and Relationship Mining from Markdown.

Scans a document for concept mentions (known node names and capitalised
multi-word phrases), suggests relationships from paragraph co-occurrence and
scores how technical the text is. Output is advisory: nothing found here is
ever merged into the graph automatically.
"""

import re
from dataclasses import dataclass, field

from semgraph.knowledge.graph_store import GraphSnapshot
from semgraph.knowledge.schemas import (
    CandidateRelationship,
    CodeBlock,
    MarkdownEnrichment,
    MarkdownSection,
    RelationshipType,
)
from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Patterns
# ============================================================================

CAPITALIZED_PHRASE = re.compile(r"\b[A-Z][\w'\-]*(?:[ \t]+[A-Z][\w'\-]*)+")
HEADING = re.compile(r"^(#{1,6})\s*(.*?)\s*#*\s*$")
FENCE = "```"
SENTENCE_SPLIT = re.compile(r"[.!?]+(?:\s+|$)")
TOKEN = re.compile(r"[a-z0-9][a-z0-9'\-]*")
LEADING_WORD = re.compile(r"(\S+)[ \t]+")

# Words that start a sentence rather than a name
LEADING_STOPWORDS = {
    "a", "an", "and", "as", "at", "but", "by", "for", "from", "how", "i",
    "if", "in", "is", "it", "of", "on", "or", "our", "so", "that", "the",
    "then", "these", "this", "those", "to", "we", "what", "when", "where",
    "while", "why", "with", "you",
}

# Linking verbs between two concepts, checked in order
RELATION_VERBS: list[tuple[re.Pattern[str], RelationshipType]] = [
    (re.compile(r"\b(?:requires?|depends? on|prerequisite)\b", re.I), RelationshipType.CONCEPT_PREREQUISITE),
    (re.compile(r"\b(?:uses?|contains?)\b", re.I), RelationshipType.CONCEPT_USED_IN_MODEL),
    (re.compile(r"\bproduces?\b", re.I), RelationshipType.MODEL_PRODUCES_TRADE),
    (re.compile(r"\bdefines?\b", re.I), RelationshipType.DOCUMENT_DEFINES),
    (re.compile(r"\b(?:is part of|relates? to|related to)\b", re.I), RelationshipType.CONCEPT_RELATED_TO),
]

MAX_LINK_GAP = 80  # characters between two mentions for a verb to link them
CONTEXT_CHARS = 200

# Complexity blend
RICHNESS_WEIGHT = 0.35
SENTENCE_WEIGHT = 0.35
DOMAIN_WEIGHT = 0.30
LONG_SENTENCE_WORDS = 25.0
SATURATING_DOMAIN_DENSITY = 0.25


@dataclass
class _Mention:
    name: str
    start: int
    end: int


@dataclass
class _ParsedDocument:
    paragraphs: list[str] = field(default_factory=list)
    sections: list[MarkdownSection] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)


# ============================================================================
# Enricher
# ============================================================================


class TextEnricher:
    """
    Mine a markdown document against one graph snapshot.

    Usage:
        enricher = TextEnricher(store.snapshot)
        report = enricher.enrich("ict-notes.md", markdown_text)
        report.concepts          # ["Fair Value Gap", "Order Block", ...]
        report.relationships     # co-occurrence suggestions
        report.complexity        # 0..1
    """

    def __init__(
        self,
        snapshot: GraphSnapshot,
        relationship_confidence: float = 0.3,
    ) -> None:
        """
        Initialize the enricher.

        Args:
            snapshot: Graph generation supplying known names and domain terms
            relationship_confidence: Confidence attached to co-occurrence links
        """
        self.snapshot = snapshot
        self.relationship_confidence = relationship_confidence

    def enrich(self, title: str, text: str) -> MarkdownEnrichment:
        """
        Extract concepts, candidate relationships and complexity from a document.

        Args:
            title: Document title or path (used as the report key)
            text: Markdown body

        Returns:
            MarkdownEnrichment report
        """
        text = text or ""
        parsed = _parse_markdown(text)

        concepts: list[str] = []
        seen_concepts: set[str] = set()
        matched_ids: list[str] = []
        relationships: list[CandidateRelationship] = []
        seen_pairs: set[frozenset[str]] = set()

        for p_index, paragraph in enumerate(parsed.paragraphs):
            mentions = self._paragraph_mentions(paragraph, matched_ids)

            for mention in mentions:
                key = mention.name.lower()
                if key not in seen_concepts:
                    seen_concepts.add(key)
                    concepts.append(mention.name)

            for i, first in enumerate(mentions):
                for second in mentions[i + 1:]:
                    pair = frozenset((first.name.lower(), second.name.lower()))
                    overlapping = second.start < first.end
                    if overlapping or len(pair) < 2 or pair in seen_pairs:
                        continue
                    seen_pairs.add(pair)
                    relationships.append(
                        CandidateRelationship(
                            source=first.name,
                            target=second.name,
                            suggested_type=_linking_type(paragraph, first, second),
                            confidence=self.relationship_confidence,
                            paragraph_index=p_index,
                            context=paragraph[:CONTEXT_CHARS],
                        )
                    )

        prose = "\n\n".join(parsed.paragraphs)
        word_count = len(text.split())

        report = MarkdownEnrichment(
            title=title,
            concepts=concepts,
            matched_node_ids=matched_ids,
            relationships=relationships,
            sections=parsed.sections,
            code_blocks=parsed.code_blocks,
            word_count=word_count,
            concept_density=len(concepts) / max(word_count, 1) * 100,
            complexity=self.complexity(prose),
        )

        logger.debug(
            f"Enriched '{title}': {len(concepts)} concepts, "
            f"{len(relationships)} relationships, complexity={report.complexity:.2f}"
        )
        return report

    def complexity(self, text: str) -> float:
        """
        Heuristic technical complexity in [0, 1].

        Blends vocabulary richness (distinct-token ratio), average sentence
        length and the density of domain terms taken from node names and tags.
        """
        tokens = TOKEN.findall(text.lower())
        if not tokens:
            return 0.0

        richness = len(set(tokens)) / len(tokens)

        sentences = [s for s in SENTENCE_SPLIT.split(text) if TOKEN.search(s.lower())]
        avg_sentence = len(tokens) / max(len(sentences), 1)
        sentence_score = min(avg_sentence / LONG_SENTENCE_WORDS, 1.0)

        vocabulary = self.snapshot.vocabulary
        domain_hits = sum(1 for t in tokens if t in vocabulary)
        domain_score = min(domain_hits / len(tokens) / SATURATING_DOMAIN_DENSITY, 1.0)

        score = (
            RICHNESS_WEIGHT * richness
            + SENTENCE_WEIGHT * sentence_score
            + DOMAIN_WEIGHT * domain_score
        )
        return round(min(max(score, 0.0), 1.0), 4)

    def _paragraph_mentions(self, paragraph: str, matched_ids: list[str]) -> list[_Mention]:
        """Known node names and capitalised phrases, ordered by position."""
        mentions: list[_Mention] = []

        for node, offset in self.snapshot.find_mentions(paragraph):
            if node.id not in matched_ids:
                matched_ids.append(node.id)
            name = node.label.strip()
            mentions.append(_Mention(name, offset, offset + len(name)))

        for match in CAPITALIZED_PHRASE.finditer(paragraph):
            phrase, start = _strip_leading_stopwords(match.group(0), match.start())
            # Known names were already reported under their canonical spelling
            if phrase is None or phrase.lower() in self.snapshot.names:
                continue
            mentions.append(_Mention(phrase, start, start + len(phrase)))

        mentions.sort(key=lambda m: (m.start, -(m.end - m.start)))
        return mentions


# ============================================================================
# Helpers
# ============================================================================


def _parse_markdown(text: str) -> _ParsedDocument:
    """Split markdown into prose paragraphs, sections and fenced code blocks."""
    doc = _ParsedDocument()
    paragraph: list[str] = []
    section: MarkdownSection | None = None
    section_lines: list[str] = []
    code_lang: str | None = None
    code_lines: list[str] = []

    def flush_paragraph() -> None:
        if paragraph:
            doc.paragraphs.append(" ".join(paragraph))
            paragraph.clear()

    def flush_section() -> None:
        if section is not None:
            section.content = "\n".join(section_lines).strip()
            doc.sections.append(section)
        section_lines.clear()

    for line in text.splitlines():
        stripped = line.strip()

        if stripped.startswith(FENCE):
            if code_lang is None:
                flush_paragraph()
                code_lang = stripped[len(FENCE):].strip()
            else:
                doc.code_blocks.append(CodeBlock(language=code_lang, content="\n".join(code_lines).strip()))
                code_lang = None
                code_lines = []
            continue

        if code_lang is not None:
            code_lines.append(line)
            continue

        heading = HEADING.match(stripped)
        if heading:
            flush_paragraph()
            flush_section()
            section = MarkdownSection(heading=heading.group(2), level=len(heading.group(1)))
            if heading.group(2):
                doc.paragraphs.append(heading.group(2))
            continue

        if not stripped:
            flush_paragraph()
        else:
            paragraph.append(stripped)
        section_lines.append(line)

    # An unterminated fence still counts as a code block
    if code_lang is not None:
        doc.code_blocks.append(CodeBlock(language=code_lang, content="\n".join(code_lines).strip()))

    flush_paragraph()
    flush_section()
    return doc


def _strip_leading_stopwords(phrase: str, start: int) -> tuple[str | None, int]:
    """Drop sentence-initial filler words; keep phrases of two or more words."""
    while True:
        match = LEADING_WORD.match(phrase)
        if not match or match.group(1).lower() not in LEADING_STOPWORDS:
            break
        start += match.end()
        phrase = phrase[match.end():]
    if len(phrase.split()) < 2:
        return None, start
    return phrase, start


def _linking_type(
    paragraph: str,
    first: _Mention,
    second: _Mention,
) -> RelationshipType | None:
    """Typed hint when a linking verb sits between two nearby mentions."""
    gap = paragraph[first.end:second.start]
    if not gap or len(gap) > MAX_LINK_GAP:
        return None
    for pattern, rel_type in RELATION_VERBS:
        if pattern.search(gap):
            return rel_type
    return None
