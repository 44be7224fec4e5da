"""
Prompt templates for question generation.

Every template asks the model for the same four-section plain-text
grammar (QUESTION / CORRECT / WRONG / EXPLANATIONS) so that one parser
(see parsers.py) can recover any question type. The templates only
differ in what kind of question and options they ask for.
"""
from dataclasses import dataclass
from typing import Dict, List, Sequence

DEFAULT_QUESTION_TYPE = "SOL"

SOURCE_HEADER = "===== TEXT TO CREATE QUESTION FROM ====="
SOURCE_FOOTER = "===== END OF TEXT (Do not use anything below to generate questions from) ====="


@dataclass(frozen=True)
class QuestionTypeTemplate:
    code: str
    label: str
    task: str
    question_hint: str
    correct_hint: str
    wrong_hints: Sequence[str]
    rules: Sequence[str] = ()
    multiple_correct: bool = False

    @property
    def wrong_count(self) -> int:
        return len(self.wrong_hints)

    def render(self) -> str:
        """Instruction block with the exact output grammar for this type."""
        wrong_lines = "\n".join(f"[{hint}]" for hint in self.wrong_hints)
        explanation_lines = "\n".join(
            f"WRONG {i}: [Why option {i} is wrong]" for i in range(1, self.wrong_count + 1)
        )
        rules = list(self.rules)
        if self.multiple_correct:
            rules.extend(_MULTIPLE_CORRECT_RULES)
        rules.extend(_COMMON_RULES)
        rules_text = "\n".join(f"- {rule}" for rule in rules)

        return f"""{self.task} Follow this exact structure:

QUESTION:
[{self.question_hint}]

CORRECT:
[{self.correct_hint}]

WRONG:
{wrong_lines}

EXPLANATIONS:
CORRECT: [Why this answer is correct]
{explanation_lines}

Important rules:
{rules_text}

Generate now:"""


_COMMON_RULES = (
    'After "WRONG:" write THREE options on separate lines (no WRONG 1:, WRONG 2: labels)',
    'After "EXPLANATIONS:" use the CORRECT: and WRONG 1:, WRONG 2:, WRONG 3: labels',
    "Do NOT use A/B/C/D or 1/2/3/4 prefixes on answers",
    "Do NOT use markdown formatting",
    "Question must be answerable from the text above",
)

_SHORT_OPTIONS = "Keep all answer options SHORT (2-5 words only)"

# Several true statements are folded into the single CORRECT option
_MULTIPLE_CORRECT_RULES = (
    "Write the whole correct option on ONE line",
    "The correct option must name EVERY true statement, not just one of them",
)

_SINGLE_CORRECT = QuestionTypeTemplate(
    code="SOL",
    label="Single correct answer",
    task="Create a quiz question about the text above.",
    question_hint="Your question text",
    correct_hint="The correct answer in 2-5 words",
    wrong_hints=(
        "First wrong answer in 2-5 words",
        "Second wrong answer in 2-5 words",
        "Third wrong answer in 2-5 words",
    ),
    rules=(_SHORT_OPTIONS,),
)

QUESTION_TEMPLATES: Dict[str, QuestionTypeTemplate] = {
    "SOL": _SINGLE_CORRECT,
    "MCQ": QuestionTypeTemplate(
        code="MCQ",
        label="Multiple choice",
        task=_SINGLE_CORRECT.task,
        question_hint=_SINGLE_CORRECT.question_hint,
        correct_hint=_SINGLE_CORRECT.correct_hint,
        wrong_hints=_SINGLE_CORRECT.wrong_hints,
        rules=_SINGLE_CORRECT.rules,
    ),
    "SML": QuestionTypeTemplate(
        code="SML",
        label="Multiple correct statements",
        task=(
            "Create a MULTIPLE-CORRECT quiz question about the text above: "
            "2-3 statements are true and the correct option names all of them together."
        ),
        question_hint="Your question asking which statements are true",
        correct_hint="One option naming ALL the true statements together, e.g. 'Both X and Y'",
        wrong_hints=(
            "Option naming a wrong combination",
            "Option naming another wrong combination",
            "Option naming a third wrong combination",
        ),
        multiple_correct=True,
    ),
    "TF": QuestionTypeTemplate(
        code="TF",
        label="True statement",
        task="Create a TRUE/FALSE style question: the reader must pick the one TRUE statement.",
        question_hint="Which of the following statements is true?",
        correct_hint="A statement that is TRUE according to the text",
        wrong_hints=(
            "A statement that is FALSE according to the text",
            "Another FALSE statement",
            "A third FALSE statement",
        ),
        rules=("Each statement must be one short sentence",),
    ),
    "FIB": QuestionTypeTemplate(
        code="FIB",
        label="Fill in the blank",
        task="Create a FILL IN THE BLANK question about the text above.",
        question_hint="A sentence from the text with _____ where the answer should go",
        correct_hint="The word or phrase that fills the blank",
        wrong_hints=(
            "A plausible but wrong word or phrase",
            "Another plausible but wrong word or phrase",
            "A third plausible but wrong word or phrase",
        ),
        rules=(_SHORT_OPTIONS,),
    ),
    "NAT": QuestionTypeTemplate(
        code="NAT",
        label="Numeric answer",
        task="Create a NUMERIC ANSWER question whose answer is a specific number from the text.",
        question_hint="Your question asking for a number",
        correct_hint="The numeric answer, with units if any",
        wrong_hints=(
            "A wrong but plausible number",
            "Another wrong number",
            "A third wrong number",
        ),
        rules=("Write numbers only, with units where the text uses them",),
    ),
    "DES": QuestionTypeTemplate(
        code="DES",
        label="Descriptive",
        task="Create a DESCRIPTIVE question about the text above whose options are one-sentence answers.",
        question_hint="An open-ended why/how question",
        correct_hint="The best one-sentence answer",
        wrong_hints=(
            "A one-sentence answer that is wrong or incomplete",
            "Another wrong one-sentence answer",
            "A third wrong one-sentence answer",
        ),
    ),
}


def question_type_codes() -> List[str]:
    return list(QUESTION_TEMPLATES)


def get_template(question_type: str) -> QuestionTypeTemplate:
    """Template for a type code; unknown codes fall back to the single-correct template."""
    return QUESTION_TEMPLATES.get((question_type or "").strip().upper(), QUESTION_TEMPLATES[DEFAULT_QUESTION_TYPE])


def format_previous_questions(previous_questions: Sequence[str]) -> str:
    if not previous_questions:
        return ""
    numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(previous_questions, start=1))
    return f"""
ALREADY GENERATED QUESTIONS:
{numbered}

IMPORTANT: Do NOT generate any question similar to the above.
Create a COMPLETELY DIFFERENT question about a DIFFERENT topic from the text.
Do NOT repeat or rephrase the questions listed above.

"""


def build_prompt(question_type: str, source_text: str, previous_questions: Sequence[str] = ()) -> str:
    """
    Render the full prompt sent to the model for one question.

    Args:
        question_type: Type code such as "MCQ" or "FIB"
        source_text: Text the question must be answerable from
        previous_questions: Question texts already generated in this batch

    Returns:
        Prompt string
    """
    base_text = f"{SOURCE_HEADER}\n{source_text}\n{SOURCE_FOOTER}\n\n"
    return base_text + format_previous_questions(previous_questions) + get_template(question_type).render()
