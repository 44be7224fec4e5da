import os
import sys
import tempfile
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Keep diagnostic logs and uploads out of the working tree
_scratch = tempfile.mkdtemp(prefix="quizgen_tests_")
os.environ.setdefault("LOG_DIR", os.path.join(_scratch, "logs"))
os.environ.setdefault("UPLOAD_DIR", os.path.join(_scratch, "uploads"))

import pytest

from error_handling import ModelCallError, Result
from generation_log import GenerationLogStore


def render_completion(question="What is the capital of France?",
                      correct="Paris",
                      wrong=("Berlin", "Madrid", "Rome"),
                      explanations=None):
    """Render a completion in the exact grammar the prompts ask for."""
    lines = ["QUESTION:", question, "", "CORRECT:", correct, "", "WRONG:"]
    lines.extend(wrong)
    if explanations is not None:
        lines.extend(["", "EXPLANATIONS:", f"CORRECT: {explanations[0]}"])
        for i, explanation in enumerate(explanations[1:], start=1):
            lines.append(f"WRONG {i}: {explanation}")
    return "\n".join(lines)


EXPLANATIONS = [
    "Paris has been the capital since the 10th century.",
    "Berlin is the capital of Germany.",
    "Madrid is the capital of Spain.",
    "Rome is the capital of Italy.",
]


class FakeModelCaller:
    """Model caller returning scripted completions (str) or failures (exceptions) in order."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.prompts = []

    def call(self, model, prompt):
        self.prompts.append(prompt)
        output = self.outputs.pop(0)
        if isinstance(output, ModelCallError):
            return Result.failure(output)
        return Result.success(output, raw_output=output)


@pytest.fixture
def completion():
    return render_completion(explanations=EXPLANATIONS)


@pytest.fixture
def log_store(tmp_path):
    return GenerationLogStore(str(tmp_path / "logs" / "question_generation.jsonl"))


@pytest.fixture
def sample_text():
    return (
        "Photosynthesis is the process by which green plants convert light energy into chemical energy. "
        "It takes place mainly in the chloroplasts of leaf cells, which contain chlorophyll. "
        "Oxygen is released as a by-product."
    )
