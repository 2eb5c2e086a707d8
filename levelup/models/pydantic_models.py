"""
Pydantic Models for task classification and recommendations

TaskClassification doubles as the JSON schema sent to the LLM, so the
model's answer can be validated with model_validate().
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from levelup.config import load_config


class TaskCategory(str, Enum):
    """Habit vs. one-off task"""
    HABIT = "habit"
    TODO = "todo"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class EnergyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Mood(str, Enum):
    GOOD = "good"
    NEUTRAL = "neutral"
    TIRED = "tired"


class RecommendationType(str, Enum):
    MICRO = "micro"
    WARMUP = "warmup"
    MILESTONE = "milestone"


class TaskClassification(BaseModel):
    """AI analysis of a free-text task description"""
    category: TaskCategory = Field(description="habit for repeated behaviour to build, todo for a task with a clear end")
    title: str = Field(min_length=1, max_length=200, description="Short task title")
    difficulty: Difficulty = Field(description="easy, medium or hard")
    skill_name: Optional[str] = Field(default=None, description="One of the six core skills")
    energy_balls: int = Field(ge=1, le=6, description="Energy balls needed, one ball = 15 minutes")
    source: str = Field(default="ai", description="ai, rules or cache")

    @field_validator('skill_name')
    @classmethod
    def known_skill(cls, value):
        if value and value not in load_config()['core_skills']:
            return None
        return value or None


class UserState(BaseModel):
    """Self-reported state used for recommendations"""
    energy_level: Optional[EnergyLevel] = Field(default=None, description="Derived from the energy balance when missing")
    available_time: int = Field(default=60, ge=1, le=24 * 60, description="Free minutes right now")
    mood: Mood = Field(default=Mood.NEUTRAL)


class TaskRecommendation(BaseModel):
    task_id: Optional[int] = None
    title: str
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    type: RecommendationType
