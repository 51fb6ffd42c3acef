"""
Evaluation Pydantic Models

Structured output model for LLM answer evaluation during review drills.
"""

from pydantic import BaseModel, Field
from typing import Literal


class AnswerEvaluation(BaseModel):
    """
    Answer evaluation result from LLM.
    Used when the learner's answer does not match any expected answer locally.

    Evaluation criteria:
    - The answer is correct if it matches any one expected answer
    - Lenient with hiragana vs katakana (ドク = どく)
    - Lenient with extra punctuation or whitespace
    - May pass a correct answer missing from the list, with an explanation

    Example:
    {
        "result": "pass",
        "explanation": "Correct! よむ is one of the kun'yomi readings."
    }
    """
    result: Literal['pass', 'fail'] = Field(
        description="Whether the user's answer is correct"
    )
    explanation: str = Field(
        description="One-sentence explanation referencing the user's answer"
    )
