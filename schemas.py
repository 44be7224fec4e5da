"""
Pydantic models shared by the parser, the generator, the audit log and the API
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CORRECT_EXPLANATION = "This is the correct answer based on the transcript."
DEFAULT_WRONG_EXPLANATION = "This option is incorrect."


def default_explanations() -> List[str]:
    return [DEFAULT_CORRECT_EXPLANATION] + [DEFAULT_WRONG_EXPLANATION] * 3


class ModelSelector(BaseModel):
    mode: str
    model: str


class ParsedQuestion(BaseModel):
    """Structured question recovered from one completion."""
    model_config = ConfigDict(frozen=True)

    question: str
    correct: str
    wrong: List[str]
    explanations: List[str] = Field(default_factory=default_explanations)

    @field_validator("wrong")
    @classmethod
    def _three_wrong_answers(cls, value: List[str]) -> List[str]:
        if len(value) < 3:
            raise ValueError(f"expected at least 3 wrong answers, got {len(value)}")
        return value[:3]

    @field_validator("explanations")
    @classmethod
    def _four_explanations(cls, value: List[str]) -> List[str]:
        if len(value) != 4:
            raise ValueError(f"expected exactly 4 explanations, got {len(value)}")
        return value


class GeneratedOption(BaseModel):
    text: str
    correct: bool
    explanation: str = ""


class GeneratedQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_text: str
    options: List[GeneratedOption]
    solution: str
    question_type: str
    elapsed_seconds: float
    raw_output: Optional[str] = None
    parsed_data: Optional[ParsedQuestion] = None


class PromptLogEntry(BaseModel):
    question_type: str
    prompt: str
    response: str
    elapsed_seconds: float
    succeeded: bool = True
    error_kind: Optional[str] = None


class OriginMetadata(BaseModel):
    source: str = "text"  # text, youtube, upload
    video_id: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    filename: Optional[str] = None


class BatchLogRecord(BaseModel):
    id: str
    timestamp: str
    mode: str
    model: str
    question_type_counts: Dict[str, int]
    total_elapsed_seconds: float
    questions_generated: int
    questions: List[GeneratedQuestion]
    prompts: List[PromptLogEntry]
    source_text: str
    origin: Optional[OriginMetadata] = None


class BatchResult(BaseModel):
    batch_id: str
    questions: List[GeneratedQuestion]
    prompt_log: List[PromptLogEntry]
    total_elapsed_seconds: float
    questions_generated: int
    selector: ModelSelector


# --- Request / response models ---

class GenerateRequest(BaseModel):
    source_text: str = Field(min_length=1)
    question_types: Dict[str, int] = Field(default_factory=lambda: {"MCQ": 1})
    mode: Optional[str] = None
    model: Optional[str] = None


class YouTubeGenerateRequest(BaseModel):
    video_url: str = Field(min_length=1)
    start_time: Optional[float] = Field(default=None, ge=0)
    end_time: Optional[float] = Field(default=None, ge=0)
    question_types: Dict[str, int] = Field(default_factory=lambda: {"MCQ": 1})
    mode: Optional[str] = None
    model: Optional[str] = None


class GenerateResponse(BaseModel):
    questions: List[GeneratedQuestion]
    total_elapsed_seconds: float
    mode: str
    model: str
    batch_id: str
    questions_generated: int
