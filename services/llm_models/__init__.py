"""
LLM Pydantic Models

Structured output models for content generation:
- Scenario models (GeneratedScenario, ChatTurnReply, ScenarioEvaluation)
- Evaluation models (AnswerEvaluation)
"""

from .scenario_models import (
    ScenarioSetting,
    ScenarioRoles,
    DialogueLine,
    ExtractedKUCandidate,
    GrammarNote,
    GeneratedScenario,
    ChatTurnReply,
    SceneCorrection,
    ScenarioEvaluation
)
from .evaluation_models import AnswerEvaluation

__all__ = [
    'ScenarioSetting',
    'ScenarioRoles',
    'DialogueLine',
    'ExtractedKUCandidate',
    'GrammarNote',
    'GeneratedScenario',
    'ChatTurnReply',
    'SceneCorrection',
    'ScenarioEvaluation',
    'AnswerEvaluation'
]
