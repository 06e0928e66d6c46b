"""Reply text cleanup and chat formatting."""

import re
from dataclasses import dataclass

# Citation bracket families: (open, close). Assistant file-search citations
# use lenticular brackets; other sources emit square or round ones.
LENTICULAR = ("【", "】")
WHITE_SQUARE = ("⟦", "⟧")
SQUARE = ("[", "]")
ROUND = ("(", ")")


@dataclass(frozen=True)
class CitationBrackets:
    """Which bracket families count as citation markers."""

    families: tuple[tuple[str, str], ...] = (LENTICULAR, WHITE_SQUARE, SQUARE, ROUND)

    def patterns(self) -> list[re.Pattern[str]]:
        return [_citation_pattern(open_, close) for open_, close in self.families]


DEFAULT_BRACKETS = CitationBrackets()

_TAG_SEPARATORS = "†*\\-"


def _citation_pattern(open_: str, close: str) -> re.Pattern[str]:
    o, c = re.escape(open_), re.escape(close)
    # N, N:M, then an optional tag after †, * or -; the tag itself is optional.
    body = rf"\d{{1,3}}(?::\d{{1,3}})?(?:[ ]?[{_TAG_SEPARATORS}][^{c}\n]{{0,80}})?"
    guard = ""
    if open_ == "[":
        guard = r"(?!\()"  # [1](http://...) is a link, not a citation
    elif open_ == "(":
        guard = r"(?![ ]?\d{4,5}-?\d{4})"  # (11) 98765-4321 is a phone number
    return re.compile(rf"[ \t]*{o}{body}{c}{guard}")


_MARKDOWN_LINK_RE = re.compile(r"\[([^\]\n]*)\]\((https?://[^\s)]+)\)")
_SOURCES_HEADING_RE = re.compile(
    r"^[ \t]*(?:\*\*|__|#+[ \t]*)?[ \t]*"
    r"(?:sources?|fontes?|refer[êe]ncias|references)"
    r"[ \t]*:?[ \t]*(?:\*\*|__)?[ \t]*:?[ \t]*(?:\n|$)",
    re.IGNORECASE | re.MULTILINE,
)
_INLINE_WS_RE = re.compile(r"[^\S\n]+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def sanitize(raw: str, brackets: CitationBrackets = DEFAULT_BRACKETS) -> str:
    """
    Strip citation artifacts and normalize whitespace.

    Never makes the text longer. Returns "" for empty input.
    """
    if not raw:
        return ""

    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    for pattern in brackets.patterns():
        text = pattern.sub("", text)

    text = _MARKDOWN_LINK_RE.sub(lambda m: m.group(2), text)
    text = _SOURCES_HEADING_RE.sub("", text)

    text = _INLINE_WS_RE.sub(" ", text)
    text = re.sub(r" ?\n ?", "\n", text)
    text = _EXCESS_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


_UPPER = "A-ZÁÀÂÃÉÊÍÓÔÕÚÇ"
_SENTENCE_BREAK_RE = re.compile(
    r"(?<![\d\s])(?<!\bDr)(?<!\bDra)(?<!\bSr)(?<!\bSra)(?<!\bMr)(?<!\bMrs)(?<!\bMs)"
    rf"([.!?])[ ]+(?=[{_UPPER}])"
)
_URL_BREAK_RE = re.compile(r"[ ]+(?=(?:https?://|www\.)\S)")
_EMAIL_BREAK_RE = re.compile(r"[ ]+(?=[\w.+-]+@[\w-]+\.[\w.-]+)")
_PHONE_BREAK_RE = re.compile(r"(?<![\d+])[ ]+(?=\+?\d{0,3}[ ]?\(?\d{2,3}\)?[ ]?\d{4,5}-?\d{4}\b)")
_SALUTATION_BREAK_RE = re.compile(
    r"[ ]+(?=(?:Atenciosamente|Cordialmente|Abraços|Um abraço|Até logo|Até mais|"
    r"Best regards|Kind regards|Regards|Sincerely|Cheers)\b)"
)
_LIST_MARKER_RE = re.compile(r"^[ \t]*[-*][ \t]+", re.MULTILINE)


def format_for_chat(text: str) -> str:
    """Re-flow sanitized text into short chat paragraphs."""
    if not text:
        return ""

    out = _SENTENCE_BREAK_RE.sub(r"\1\n\n", text)
    out = _URL_BREAK_RE.sub("\n", out)
    out = _EMAIL_BREAK_RE.sub("\n", out)
    out = _PHONE_BREAK_RE.sub("\n", out)
    out = _SALUTATION_BREAK_RE.sub("\n\n", out)
    out = _LIST_MARKER_RE.sub("• ", out)
    out = _EXCESS_NEWLINES_RE.sub("\n\n", out)
    return out.strip()


def clean_reply(raw: str, brackets: CitationBrackets = DEFAULT_BRACKETS) -> str:
    """Full reply pipeline: sanitize, then format."""
    return format_for_chat(sanitize(raw, brackets=brackets))
