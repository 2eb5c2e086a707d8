"""
Services module
"""

from .cache import TTLCache
from .task_classifier import TaskClassifier
from .recommender import TaskRecommender, recommend_tasks

__all__ = ['TTLCache', 'TaskClassifier', 'TaskRecommender', 'recommend_tasks']
