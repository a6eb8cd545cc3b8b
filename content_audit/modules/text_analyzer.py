"""
Text Analyzer
=============

Tokenization, word/sentence statistics, frequency-ranked key terms and
weighted term coverage. Pure functions over text: no I/O, no shared state.

One ``TextAnalyzer`` instance is built by whoever owns the pipeline and passed
to the guideline synthesizer, the content scorer and the suggestion
generators.

Term matching is case-insensitive substring containment over
whitespace-normalized text. ``term_normalized`` keys are lowercased surface
forms, not stems.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from content_audit.utils.helpers import round_half_up

_WORD_RE = re.compile(r"[^\W_]+(?:['’\-][^\W_]+)*")
_SENTENCE_BOUNDARY_RE = re.compile(r"[.!?…]+")
_PARAGRAPH_BOUNDARY_RE = re.compile(r"\n\s*\n")
_WHITESPACE_RE = re.compile(r"\s+")

MIN_TERM_LENGTH = 3

ENGLISH_STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "about", "above", "after", "again", "against", "all", "also", "am",
        "an", "and", "any", "are", "aren't", "as", "at", "be", "because", "been",
        "before", "being", "below", "between", "both", "but", "by", "can",
        "can't", "cannot", "could", "couldn't", "did", "didn't", "do", "does",
        "doesn't", "doing", "don't", "down", "during", "each", "even", "every",
        "few", "for", "from", "further", "get", "got", "had", "hadn't", "has",
        "hasn't", "have", "haven't", "having", "he", "he'd", "he'll", "he's",
        "her", "here", "here's", "hers", "herself", "him", "himself", "his",
        "how", "how's", "however", "i", "i'd", "i'll", "i'm", "i've", "if", "in",
        "into", "is", "isn't", "it", "it's", "its", "itself", "just", "let's",
        "like", "made", "make", "many", "may", "me", "might", "more", "most",
        "much", "must", "mustn't", "my", "myself", "new", "no", "nor", "not",
        "now", "of", "off", "on", "once", "one", "only", "or", "other", "ought",
        "our", "ours", "ourselves", "out", "over", "own", "same", "say", "says",
        "shan't", "she", "she'd", "she'll", "she's", "should", "shouldn't", "so",
        "some", "such", "than", "that", "that's", "the", "their", "theirs",
        "them", "themselves", "then", "there", "there's", "these", "they",
        "they'd", "they'll", "they're", "they've", "this", "those", "through",
        "to", "too", "under", "until", "up", "upon", "us", "use", "used",
        "using", "very", "via", "was", "wasn't", "way", "we", "we'd", "we'll",
        "we're", "we've", "well", "were", "weren't", "what", "what's", "when",
        "when's", "where", "where's", "whether", "which", "while", "who",
        "who's", "whom", "why", "why's", "will", "with", "within", "without",
        "won't", "would", "wouldn't", "yet", "you", "you'd", "you'll", "you're",
        "you've", "your", "yours", "yourself", "yourselves",
    }
)


@dataclass(frozen=True)
class TextStats:
    """Basic statistics for a block of text."""
    word_count: int = 0
    sentence_count: int = 0
    paragraph_count: int = 0
    avg_sentence_length: float = 0.0


@dataclass(frozen=True)
class KeyTerm:
    """A frequency-ranked term; importance is on a 1-10 scale."""
    term: str
    count: int
    importance: int


@dataclass(frozen=True)
class TermCoverage:
    """Weighted presence of guideline terms in a text."""
    score: int = 100
    missing_terms: list[str] = field(default_factory=list)
    present_terms: list[str] = field(default_factory=list)


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace runs to single spaces."""
    return _WHITESPACE_RE.sub(" ", (text or "").lower()).strip()


class TextAnalyzer:
    """Stateless text analysis engine.

    Args:
        stop_words: Optional mapping of language code to stop-word set.
            Languages without an entry use the English list.
    """

    def __init__(self, stop_words: Optional[Mapping[str, frozenset[str]]] = None) -> None:
        self._stop_words = {"en": ENGLISH_STOP_WORDS}
        if stop_words:
            self._stop_words.update({code.lower(): frozenset(words) for code, words in stop_words.items()})

    def stop_words_for(self, language_code: str = "en") -> frozenset[str]:
        """Stop-word set for *language_code*, falling back to English."""
        return self._stop_words.get((language_code or "en").lower(), ENGLISH_STOP_WORDS)

    # ------------------------------------------------------------------
    # Tokenization
    # ------------------------------------------------------------------

    @staticmethod
    def tokenize(text: str) -> list[str]:
        """Word tokens; punctuation-only runs never become tokens."""
        return _WORD_RE.findall(text or "")

    # ------------------------------------------------------------------
    # analyze
    # ------------------------------------------------------------------

    def analyze(self, text: str, language_code: str = "en") -> TextStats:
        """Count words, sentences and paragraphs.

        A sentence is any stretch of text holding at least one word and
        delimited by terminal punctuation or the end of the text.
        """
        if not text or not text.strip():
            return TextStats()

        word_count = len(self.tokenize(text))
        sentence_count = sum(
            1 for segment in _SENTENCE_BOUNDARY_RE.split(text) if _WORD_RE.search(segment)
        )
        paragraph_count = sum(
            1 for block in _PARAGRAPH_BOUNDARY_RE.split(text) if _WORD_RE.search(block)
        )
        avg_sentence_length = round(word_count / sentence_count, 2) if sentence_count else 0.0

        return TextStats(
            word_count=word_count,
            sentence_count=sentence_count,
            paragraph_count=paragraph_count,
            avg_sentence_length=avg_sentence_length,
        )

    # ------------------------------------------------------------------
    # extract_key_terms
    # ------------------------------------------------------------------

    def term_frequencies(self, text: str, language_code: str = "en") -> dict[str, int]:
        """Counts of candidate terms, keyed in first-occurrence order."""
        stop_words = self.stop_words_for(language_code)
        frequency: dict[str, int] = {}
        for token in self.tokenize((text or "").lower()):
            if len(token) < MIN_TERM_LENGTH or token in stop_words:
                continue
            frequency[token] = frequency.get(token, 0) + 1
        return frequency

    def extract_key_terms(
        self, text: str, limit: int = 10, language_code: str = "en"
    ) -> list[KeyTerm]:
        """Most frequent non-stop-word terms, ties kept in first-occurrence order.

        Importance is the count rescaled against the top term to 1..10.
        """
        if limit <= 0:
            return []

        frequency = self.term_frequencies(text, language_code)
        # sorted() is stable, so equal counts keep insertion order
        ranked = sorted(frequency.items(), key=lambda item: item[1], reverse=True)[:limit]
        if not ranked:
            return []

        max_count = ranked[0][1]
        return [
            KeyTerm(term=term, count=count, importance=max(1, round_half_up(count / max_count * 10)))
            for term, count in ranked
        ]

    # ------------------------------------------------------------------
    # term_coverage
    # ------------------------------------------------------------------

    def term_coverage(
        self, text: str, terms: Iterable[Any], language_code: str = "en"
    ) -> TermCoverage:
        """Importance-weighted share of *terms* found in *text*.

        *terms* holds objects with ``term``/``importance`` attributes or
        mappings with those keys. An empty list passes vacuously.
        """
        weighted = [_term_and_weight(item) for item in terms or []]
        if not weighted:
            return TermCoverage(score=100, missing_terms=[], present_terms=[])

        haystack = normalize_text(text)
        missing: list[str] = []
        present: list[str] = []
        present_weight = 0.0
        total_weight = 0.0

        for term, weight in weighted:
            needle = normalize_text(term)
            total_weight += weight
            if needle and needle in haystack:
                present_weight += weight
                present.append(needle)
            else:
                missing.append(needle)

        score = round_half_up(present_weight / total_weight * 100) if total_weight > 0 else 100
        return TermCoverage(score=max(0, min(100, score)), missing_terms=missing, present_terms=present)

    # ------------------------------------------------------------------
    # Occurrence counting
    # ------------------------------------------------------------------

    def count_occurrences(self, text: str, term: str) -> int:
        """How often *term* occurs in *text*.

        Single words are counted as whole tokens, phrases as substrings of
        the normalized text.
        """
        needle = normalize_text(term)
        if not needle:
            return 0
        if " " not in needle and _WORD_RE.fullmatch(needle):
            return sum(1 for token in self.tokenize((text or "").lower()) if token == needle)
        return normalize_text(text).count(needle)


def _term_and_weight(item: Any) -> tuple[str, float]:
    if isinstance(item, Mapping):
        term = item.get("term") or item.get("term_normalized") or ""
        importance = item.get("importance")
    else:
        term = getattr(item, "term", "") or ""
        importance = getattr(item, "importance", None)
    if not importance:
        importance = 1
    return str(term), float(importance)
