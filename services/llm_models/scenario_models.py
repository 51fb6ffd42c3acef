"""
Scenario Pydantic Models

Structured output models for scenario generation, roleplay chat turns and
end-of-scene evaluation. These define the JSON the LLM must return.
"""

from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional


class ScenarioSetting(BaseModel):
    """Where the scene happens and what the learner must achieve."""
    location: str = Field(description="Specific location of the scene")
    participants: List[str] = Field(description="Role names of everyone in the scene")
    goal: str = Field(description="What the learner needs to achieve")
    time_of_day: str = Field(default="", description="Morning/Evening/etc")
    visual_prompt: str = Field(default="", description="Visual description of the scene for an image generator")


class ScenarioRoles(BaseModel):
    """Which participant the learner plays and which the AI plays."""
    user: str = Field(description="Exact participant name played by the learner")
    ai: str = Field(description="Exact participant name played by the AI partner")


class DialogueLine(BaseModel):
    speaker: str = Field(description="Exact participant name")
    text: str = Field(description="Japanese text")
    translation: str = Field(default="", description="English translation")


class ExtractedKUCandidate(BaseModel):
    """
    A target word surfaced from the dialogue.

    Example:
    {
        "content": "本屋",
        "reading": "ほんや",
        "meaning": "Bookstore",
        "type": "vocab"
    }
    """
    content: str = Field(description="Japanese text only, no reading or gloss")
    reading: str = Field(default="", description="Kana reading only, no romaji")
    meaning: str = Field(default="", description="English definition only")
    type: Literal['vocab', 'kanji'] = Field(default='vocab')


class GrammarNote(BaseModel):
    title: str
    explanation: str
    example_in_context: str = Field(default="", description="Example taken from the dialogue")


class GeneratedScenario(BaseModel):
    """Full scenario returned by the generator for a theme and JLPT level."""
    title: str
    description: str = ""
    setting: ScenarioSetting
    roles: Optional[ScenarioRoles] = None
    dialogue: List[DialogueLine] = Field(description="6-12 lines of natural dialogue")
    extracted_kus: List[ExtractedKUCandidate] = Field(default_factory=list, description="3-5 target words")
    grammar_notes: List[GrammarNote] = Field(default_factory=list)


class ChatTurnReply(BaseModel):
    """
    Roleplay partner reply to one learner utterance.

    Example:
    {
        "message": "コーヒーはホットですか、アイスですか？",
        "correction": "「コーヒーをください」の方が自然です。",
        "scene_finished": false
    }
    """
    message: str = Field(description="The partner's reply in Japanese (1-2 sentences)")
    correction: Optional[str] = Field(default=None, description="Short correction of the learner's last message, if needed")
    scene_finished: bool = Field(default=False, description="True once the learner has achieved the goal")


class SceneCorrection(BaseModel):
    original: str
    correction: str
    explanation: str = ""


class ScenarioEvaluation(BaseModel):
    """
    End-of-scene evaluation.

    outcome defaults from success; recommended_action defaults to
    repeat_lesson for a failed scene and replay_chat for a passed one.
    """
    success: bool
    rating: int = Field(ge=0, le=10, description="Overall rating 0-10")
    feedback: str = ""
    corrections: List[SceneCorrection] = Field(default_factory=list)
    outcome: Optional[Literal['passed', 'failed']] = None
    recommended_action: Optional[Literal['repeat_lesson', 'replay_chat']] = None

    @model_validator(mode='after')
    def _fill_outcome(self):
        if self.outcome is None:
            self.outcome = 'passed' if self.success else 'failed'
        if self.recommended_action is None:
            self.recommended_action = 'replay_chat' if self.outcome == 'passed' else 'repeat_lesson'
        return self
