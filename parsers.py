"""
Parser for plain-text question completions.

Expected format (flexible):

    QUESTION:
    [question text]

    CORRECT:
    [correct answer]

    WRONG:            (or WRONG 1:, WRONG 2:, WRONG 3:)
    [wrong answer 1]
    [wrong answer 2]
    [wrong answer 3]

    EXPLANATIONS:
    CORRECT: [explanation]
    WRONG 1: [explanation]
    WRONG 2: [explanation]
    WRONG 3: [explanation]

Section labels are located by a small scanner rather than by regular
expressions so span boundaries at label transitions are explicit.
QUESTION, CORRECT and WRONG are mandatory; EXPLANATIONS falls back to
generic text.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from error_handling import InsufficientWrongAnswersError, MissingSectionError, Result
from schemas import ParsedQuestion, default_explanations

logger = logging.getLogger("quizgen.parsers")

REQUIRED_WRONG_ANSWERS = 3

# Canonical keyword -> token searched for in the upper-cased text.
# EXPLANATION also covers EXPLANATIONS.
_SEARCH_TOKENS = {
    "QUESTION": "QUESTION",
    "CORRECT": "CORRECT",
    "WRONG": "WRONG",
    "EXPLANATIONS": "EXPLANATION",
}
# Characters allowed between a keyword and its colon ("**QUESTION**:")
_LABEL_FILLER = " \t*"
# Characters allowed before a label at the start of a line ("## QUESTION:", "- WRONG 1:")
_LINE_LEAD = " \t*#>-_"

_FENCE_LINE = re.compile(r"```[^\n]*\n")
_ITALIC = re.compile(r"\*([^*\s][^*]*)\*")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_PREFIXES = (
    re.compile(r"^[A-Da-d][.)](?:\s+|$)"),  # A. B) c.
    re.compile(r"^\d+[.)](?:\s+|$)"),       # 1. 2)
    re.compile(r"^\*+\s*"),                 # leading * or **
    re.compile(r"^[-•]\s+"),                # bullets
)


@dataclass(frozen=True)
class Label:
    keyword: str
    number: Optional[int]
    start: int
    end: int  # index just past the colon


def upper_same_length(text: str) -> str:
    """Upper-case ``text`` without changing its length ("ß" stays "ß") so indices line up."""
    return "".join(ch.upper() if len(ch.upper()) == 1 else ch for ch in text)


def strip_code_fences(text: str) -> str:
    """Remove ``` fence lines (with or without a language tag) and stray fences."""
    text = _FENCE_LINE.sub("", text)
    return text.replace("```", "")


def strip_prefix(line: str) -> str:
    """Strip enumeration, bullet and markdown decoration from one line."""
    line = line.strip().replace("**", "")
    line = _ITALIC.sub(r"\1", line)
    line = _INLINE_CODE.sub(r"\1", line)

    previous = None
    while line != previous:
        previous = line
        for pattern in _PREFIXES:
            line = pattern.sub("", line, count=1).strip()
    return line


def collapse_block(block: str) -> str:
    """Clean every line of a block and join the non-empty ones with a space."""
    cleaned = (strip_prefix(line) for line in block.splitlines())
    return " ".join(line for line in cleaned if line)


def _skip(upper: str, pos: int, end: int, chars: str) -> int:
    while pos < end and upper[pos] in chars:
        pos += 1
    return pos


def match_label(upper: str, pos: int, end: Optional[int] = None) -> Optional[Label]:
    """
    Recognise a section label starting exactly at ``pos``.

    A label is a keyword not preceded by a letter or digit, an optional
    number, then a colon: ``CORRECT:``, ``WRONG 2:``, ``**QUESTION**:``.
    """
    end = len(upper) if end is None else end
    if pos > 0 and upper[pos - 1].isalnum():
        return None

    for keyword, token in _SEARCH_TOKENS.items():
        if upper.startswith(token, pos, end):
            break
    else:
        return None

    i = pos + len(token)
    if keyword == "EXPLANATIONS" and i < end and upper[i] == "S":
        i += 1
    i = _skip(upper, i, end, _LABEL_FILLER)
    digits_start = i
    while i < end and upper[i].isdigit():
        i += 1
    number = int(upper[digits_start:i]) if i > digits_start else None
    i = _skip(upper, i, end, _LABEL_FILLER)

    if i < end and upper[i] == ":":
        return Label(keyword, number, pos, i + 1)
    return None


def _at_line_start(upper: str, pos: int) -> bool:
    line_start = upper.rfind("\n", 0, pos) + 1
    return all(ch in _LINE_LEAD for ch in upper[line_start:pos])


def iter_labels(upper: str, keywords: Iterable[str], start: int = 0, end: Optional[int] = None,
                line_start: bool = False) -> List[Label]:
    """All labels of the given keywords inside [start, end), in text order."""
    end = len(upper) if end is None else end
    found = []
    for keyword in keywords:
        token = _SEARCH_TOKENS[keyword]
        pos = upper.find(token, start, end)
        while pos != -1:
            label = match_label(upper, pos, end)
            if label is not None and label.keyword == keyword:
                if not line_start or _at_line_start(upper, pos):
                    found.append(label)
            pos = upper.find(token, pos + 1, end)
    return sorted(found, key=lambda label: label.start)


def find_anchor(upper: str, keyword: str, start: int = 0, end: Optional[int] = None,
                accept: Optional[Callable[[Label], bool]] = None) -> Optional[Label]:
    """
    First label for ``keyword`` in [start, end).

    Labels at the start of a line win over labels embedded in prose
    ("Which is correct: ..."); embedded ones are used only when no
    line-start label exists.
    """
    for line_start in (True, False):
        for label in iter_labels(upper, (keyword,), start, end, line_start=line_start):
            if accept is None or accept(label):
                return label
    return None


def _wrong_candidates(block: str) -> List[str]:
    candidates = []
    for line in block.splitlines():
        line = strip_prefix(line)
        if not line:
            continue
        label = match_label(upper_same_length(line), 0)
        if label is not None and label.keyword == "WRONG":
            line = strip_prefix(line[label.end:])
        if line and not line.upper().startswith("WRONG"):
            candidates.append(line)
    return candidates


def parse_explanations(text: str, upper: str, start: int) -> List[str]:
    """
    Explanations for [correct, wrong1, wrong2, wrong3] from ``start`` on.

    Labelled spans are mapped positionally; missing slots keep the
    default wording.
    """
    explanations = default_explanations()
    labels = []
    seen_correct = False
    for label in iter_labels(upper, ("CORRECT", "WRONG"), start):
        if label.keyword == "WRONG":
            # Only numbered WRONG labels open a span; prose "wrong:" stays in the text
            if label.number is not None:
                labels.append(label)
        elif not seen_correct and (not labels or _at_line_start(upper, label.start)):
            labels.append(label)
            seen_correct = True

    spans = []
    for i, label in enumerate(labels):
        span_end = labels[i + 1].start if i + 1 < len(labels) else len(text)
        cleaned = collapse_block(text[label.end:span_end])
        if cleaned:
            spans.append(cleaned)

    for slot, explanation in enumerate(spans[:len(explanations)]):
        explanations[slot] = explanation
    return explanations


def parse_mcq_text(text: str) -> ParsedQuestion:
    """
    Parse one plain-text completion into a ParsedQuestion.

    Raises:
        MissingSectionError: QUESTION, CORRECT or WRONG is absent or empty
        InsufficientWrongAnswersError: fewer than 3 usable wrong answers
    """
    text = strip_code_fences(text or "")
    upper = upper_same_length(text)

    explanations_label = find_anchor(upper, "EXPLANATIONS")
    head_end = explanations_label.start if explanations_label else len(text)

    question_label = find_anchor(upper, "QUESTION", 0, head_end)
    if question_label is None:
        raise MissingSectionError("QUESTION")

    correct_label = find_anchor(upper, "CORRECT", question_label.end, head_end)
    question_end = correct_label.start if correct_label else head_end
    question = collapse_block(text[question_label.end:question_end])
    if not question:
        raise MissingSectionError("QUESTION")
    if correct_label is None:
        raise MissingSectionError("CORRECT")

    # CORRECT runs up to the next WRONG label of any form
    next_wrong = find_anchor(upper, "WRONG", correct_label.end, head_end)
    correct_end = next_wrong.start if next_wrong else head_end
    correct = collapse_block(text[correct_label.end:correct_end])
    if not correct:
        raise MissingSectionError("CORRECT")

    wrong_label = (
        find_anchor(upper, "WRONG", correct_label.end, head_end, accept=lambda label: label.number is None)
        or find_anchor(upper, "WRONG", correct_label.end, head_end, accept=lambda label: label.number == 1)
    )
    if wrong_label is None:
        raise MissingSectionError("WRONG")

    candidates = _wrong_candidates(text[wrong_label.end:head_end])
    if len(candidates) < REQUIRED_WRONG_ANSWERS:
        raise InsufficientWrongAnswersError(len(candidates), candidates)
    if len(candidates) > REQUIRED_WRONG_ANSWERS:
        logger.debug("Dropping %d extra wrong answers", len(candidates) - REQUIRED_WRONG_ANSWERS)

    if explanations_label is not None:
        explanations = parse_explanations(text, upper, explanations_label.end)
    else:
        explanations = default_explanations()

    return ParsedQuestion(
        question=question,
        correct=correct,
        wrong=candidates[:REQUIRED_WRONG_ANSWERS],
        explanations=explanations,
    )


def try_parse_mcq_text(text: str) -> Result[ParsedQuestion]:
    """Result-returning variant of parse_mcq_text; the raw text is kept either way."""
    try:
        return Result.success(parse_mcq_text(text), raw_output=text)
    except (MissingSectionError, InsufficientWrongAnswersError) as e:
        return Result.failure(e, raw_output=text)
