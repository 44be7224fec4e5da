"""
Batch question generation.

For every requested (question type, count) pair the generator builds a
prompt, calls the model, parses the completion and shuffles the four
options. Attempts run strictly in order because each prompt lists the
questions already produced in the batch. A failed attempt is recorded
in the prompt log and skipped; it never aborts the batch.
"""
import logging
import random
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from error_handling import InvalidRequestError, Result
from generation_log import GenerationLogStore
from logger import quizgen_logger, performance_monitor, log_execution_time
from parsers import try_parse_mcq_text
from prompts import build_prompt
from schemas import (
    BatchLogRecord,
    BatchResult,
    GeneratedOption,
    GeneratedQuestion,
    ModelSelector,
    OriginMetadata,
    ParsedQuestion,
    PromptLogEntry,
)

logger = logging.getLogger("quizgen.generation")


class ModelCaller(Protocol):
    def call(self, model: str, prompt: str) -> Result[str]:
        ...


def make_batch_id(now: Optional[datetime] = None) -> str:
    """Timestamp with separators stripped plus a random suffix, e.g. 20250101T120000123Z-1f2e3d4c."""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%dT%H%M%S") + f"{now.microsecond // 1000:03d}Z"
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def truncate_source(text: str, limit: int = 500) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def validate_request(source_text, question_type_counts, max_per_type: Optional[int] = None):
    """Raise InvalidRequestError when the batch request is structurally unusable."""
    if not isinstance(source_text, str) or not source_text.strip():
        raise InvalidRequestError("source_text must be a non-empty string")
    if not isinstance(question_type_counts, dict):
        raise InvalidRequestError("question_types must be a mapping of type code to count")

    for question_type, count in question_type_counts.items():
        if not isinstance(question_type, str) or not question_type.strip():
            raise InvalidRequestError("question type codes must be non-empty strings")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidRequestError(f"count for {question_type} must be a non-negative integer")
        if max_per_type is not None and count > max_per_type:
            raise InvalidRequestError(
                f"count for {question_type} exceeds the limit of {max_per_type} questions per type"
            )


def build_generated_question(
    parsed: ParsedQuestion,
    question_type: str,
    elapsed_seconds: float,
    raw_output: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> GeneratedQuestion:
    """Pair answers with explanations and shuffle them into a uniformly random order."""
    options = [GeneratedOption(text=parsed.correct, correct=True, explanation=parsed.explanations[0])]
    for i, wrong in enumerate(parsed.wrong):
        options.append(GeneratedOption(text=wrong, correct=False, explanation=parsed.explanations[i + 1]))

    (rng or random).shuffle(options)

    return GeneratedQuestion(
        question_text=parsed.question,
        options=options,
        solution=parsed.correct,
        question_type=question_type,
        elapsed_seconds=round(elapsed_seconds, 3),
        raw_output=raw_output,
        parsed_data=parsed,
    )


def annotate_failure(result: Result) -> str:
    """Response text stored in the prompt log for a failed attempt."""
    message = f"ERROR [{result.kind}]: {result.error}"
    if result.raw_output:
        message += f"\n\nRaw output:\n{result.raw_output}"
    return message


class QuestionGenerator:
    """Drives one batch at a time against a model caller and an audit log store."""

    def __init__(
        self,
        model_caller: ModelCaller,
        log_store: Optional[GenerationLogStore] = None,
        source_preview_chars: int = 500,
        max_questions_per_type: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.model_caller = model_caller
        self.log_store = log_store
        self.source_preview_chars = source_preview_chars
        self.max_questions_per_type = max_questions_per_type
        self.rng = rng or random.SystemRandom()

    @log_execution_time(quizgen_logger, "Question batch")
    def generate_batch(
        self,
        source_text: str,
        question_type_counts: Dict[str, int],
        selector: ModelSelector,
        origin: Optional[OriginMetadata] = None,
    ) -> BatchResult:
        """
        Generate every requested question and record the batch.

        Args:
            source_text: Text the questions are drawn from
            question_type_counts: Type code -> number of questions, e.g. {"MCQ": 2, "FIB": 1}
            selector: Provider mode and model name
            origin: Where the source text came from, stored with the log record

        Returns:
            BatchResult with the successful questions and one prompt log entry per attempt

        Raises:
            InvalidRequestError: the request is structurally invalid
        """
        validate_request(source_text, question_type_counts, self.max_questions_per_type)

        batch_id = make_batch_id()
        batch_start = time.time()
        questions: List[GeneratedQuestion] = []
        prompt_log: List[PromptLogEntry] = []
        previous_questions: List[str] = []

        logger.info("Batch %s started: %s via %s/%s", batch_id, question_type_counts,
                    selector.mode, selector.model)

        for question_type, count in question_type_counts.items():
            for attempt in range(1, count + 1):
                question, entry = self._attempt(source_text, question_type, selector.model, previous_questions)
                prompt_log.append(entry)
                quizgen_logger.attempt(batch_id, question_type, attempt, count,
                                       entry.elapsed_seconds, entry.error_kind)
                if question is None:
                    continue
                questions.append(question)
                previous_questions.append(question.question_text)

        total_elapsed = round(time.time() - batch_start, 3)
        performance_monitor.record_metric("generation.batch_seconds", total_elapsed, {"mode": selector.mode})

        record = BatchLogRecord(
            id=batch_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            mode=selector.mode,
            model=selector.model,
            question_type_counts=dict(question_type_counts),
            total_elapsed_seconds=total_elapsed,
            questions_generated=len(questions),
            questions=questions,
            prompts=prompt_log,
            source_text=truncate_source(source_text, self.source_preview_chars),
            origin=origin,
        )
        self._save(record)

        quizgen_logger.batch(batch_id, selector.mode, selector.model, len(questions),
                             len(prompt_log), total_elapsed)

        return BatchResult(
            batch_id=batch_id,
            questions=questions,
            prompt_log=prompt_log,
            total_elapsed_seconds=total_elapsed,
            questions_generated=len(questions),
            selector=selector,
        )

    def _attempt(self, source_text: str, question_type: str, model: str, previous_questions: List[str]):
        start_time = time.time()
        prompt = build_prompt(question_type, source_text, previous_questions)

        completion = self.model_caller.call(model, prompt)
        if completion.ok:
            outcome = try_parse_mcq_text(completion.value)
        else:
            outcome = completion

        elapsed = time.time() - start_time
        performance_monitor.record_metric("generation.attempt_seconds", elapsed, {"type": question_type})

        if not outcome.ok:
            entry = PromptLogEntry(
                question_type=question_type,
                prompt=prompt,
                response=annotate_failure(outcome),
                elapsed_seconds=round(elapsed, 3),
                succeeded=False,
                error_kind=outcome.kind,
            )
            return None, entry

        question = build_generated_question(outcome.value, question_type, elapsed,
                                            raw_output=completion.value, rng=self.rng)
        entry = PromptLogEntry(
            question_type=question_type,
            prompt=prompt,
            response=completion.value,
            elapsed_seconds=round(elapsed, 3),
        )
        return question, entry

    def _save(self, record: BatchLogRecord):
        if self.log_store is None:
            return
        try:
            self.log_store.append(record)
        except OSError as e:
            # The generated questions are still returned to the caller
            logger.error("Failed to write generation log %s: %s", record.id, e)
