"""
Task Recommender - picks the open tasks that fit the user's current state
"""

from typing import List, Dict, Any, Optional

from levelup.models.pydantic_models import (
    UserState, TaskRecommendation, EnergyLevel, Mood, RecommendationType
)


def energy_level_from_balance(current: int, capacity: int) -> EnergyLevel:
    """Map an energy-ball balance to a coarse energy level."""
    if capacity <= 0:
        return EnergyLevel.LOW
    ratio = current / capacity
    if ratio < 1 / 3:
        return EnergyLevel.LOW
    if ratio >= 2 / 3:
        return EnergyLevel.HIGH
    return EnergyLevel.MEDIUM


class TaskRecommender:
    """Rule-based scorer over a user's open tasks"""

    BASE_SCORE = 0.5

    WARMUP_REASONS = [
        'Start with something small to get into the flow',
        'A quick win to build momentum',
    ]

    def __init__(self, tasks: List[Dict[str, Any]], energy_balance: Optional[int] = None):
        """
        Args:
            tasks: Task rows of the user
            energy_balance: Current energy balls, used to flag overdrafts
        """
        self.tasks = [t for t in tasks if not t.get('completed')]
        self.energy_balance = energy_balance

    def recommend(self, state: UserState, limit: int = 3) -> List[TaskRecommendation]:
        """Top ``limit`` open tasks for the given state, best first."""
        scored = []
        for task in self.tasks:
            if not self._is_suitable(task, state):
                continue
            scored.append(TaskRecommendation(
                task_id=task.get('id'),
                title=task.get('title', ''),
                reason=self._reason(task, state),
                confidence=self.score(task, state),
                type=self._recommendation_type(task)
            ))

        scored.sort(key=lambda r: r.confidence, reverse=True)
        return scored[:limit]

    def recommend_warmup(self) -> List[TaskRecommendation]:
        """Fallback suggestions when no open task fits."""
        return [
            TaskRecommendation(title='Warm-up', reason=self.WARMUP_REASONS[0],
                               confidence=0.9, type=RecommendationType.WARMUP),
            TaskRecommendation(title='Warm-up', reason=self.WARMUP_REASONS[1],
                               confidence=0.8, type=RecommendationType.WARMUP),
        ]

    @staticmethod
    def _duration(task: Dict[str, Any]) -> int:
        return max(1, task.get('estimated_duration') or 25)

    def _is_suitable(self, task: Dict[str, Any], state: UserState) -> bool:
        if state.energy_level == EnergyLevel.LOW and task.get('difficulty') == 'hard':
            return False
        return self._duration(task) <= state.available_time

    def score(self, task: Dict[str, Any], state: UserState) -> float:
        difficulty = task.get('difficulty')
        score = self.BASE_SCORE

        if state.energy_level == EnergyLevel.HIGH and difficulty == 'hard':
            score += 0.3
        elif state.energy_level == EnergyLevel.MEDIUM and difficulty == 'medium':
            score += 0.2
        elif state.energy_level == EnergyLevel.LOW and difficulty == 'easy':
            score += 0.3

        score += min(state.available_time / self._duration(task), 1) * 0.2

        if state.mood == Mood.GOOD:
            score += 0.1
        elif state.mood == Mood.TIRED and difficulty == 'easy':
            score += 0.2

        return round(min(score, 1.0), 3)

    def _reason(self, task: Dict[str, Any], state: UserState) -> str:
        reasons = []
        difficulty = task.get('difficulty')

        if state.energy_level == EnergyLevel.HIGH and difficulty == 'hard':
            reasons.append('You have plenty of energy for a challenge')
        elif state.energy_level == EnergyLevel.LOW and difficulty == 'easy':
            reasons.append('Light task that fits your current energy')

        if self._duration(task) <= state.available_time / 2:
            reasons.append('fits comfortably in your free time')

        if state.mood == Mood.GOOD:
            reasons.append('good mood, good moment to make progress')

        required = task.get('required_energy_balls') or 0
        if self.energy_balance is not None and required > self.energy_balance:
            reasons.append(f'needs {required} energy balls, you have {self.energy_balance} left')

        if not reasons:
            reasons.append('Matches your current state')

        text = ', '.join(reasons)
        return text[0].upper() + text[1:]

    @staticmethod
    def _recommendation_type(task: Dict[str, Any]) -> RecommendationType:
        if task.get('difficulty') == 'hard' or task.get('task_type') == 'main':
            return RecommendationType.MILESTONE
        if task.get('difficulty') in ('trivial', 'easy'):
            return RecommendationType.WARMUP
        return RecommendationType.MICRO


def recommend_tasks(state: UserState, tasks: List[Dict[str, Any]], limit: int = 3,
                    energy_balance: Optional[int] = None) -> List[TaskRecommendation]:
    """Recommend open tasks, or warm-ups when none fit."""
    recommender = TaskRecommender(tasks, energy_balance=energy_balance)
    return recommender.recommend(state, limit=limit) or recommender.recommend_warmup()
