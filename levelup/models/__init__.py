# Domain models package
from .pydantic_models import TaskClassification, UserState, TaskRecommendation

__all__ = ['TaskClassification', 'UserState', 'TaskRecommendation']
