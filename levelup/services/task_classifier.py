"""
Task Classifier - LLM-based categorization of free-text tasks
Uses an OpenAI-compatible chat completions API (OpenAI, DeepSeek, ...),
falls back to keyword rules when the API is not configured or fails.
"""

import os
import json
import time
import logging
from typing import Optional, Dict

import requests
from pydantic import ValidationError

from levelup.config import load_config
from levelup.models.pydantic_models import TaskClassification
from levelup.prompts import SYSTEM_PROMPT, TASK_CLASSIFICATION_PROMPT, format_skill_list
from levelup.services.cache import TTLCache
from levelup.utils.logger import logger as structured_logger
from levelup.utils.metrics import record_ai_usage, AI_REQUESTS, CACHE_HITS, CACHE_MISSES

logger = logging.getLogger(__name__)

DIFFICULTY_ENERGY = {'easy': 1, 'medium': 2, 'hard': 4}


class TaskClassifier:
    """Classifies task descriptions into category, difficulty, skill and energy cost."""

    def __init__(self, cache: Optional[TTLCache] = None):
        """Initialize Task Classifier.

        Args:
            cache: Cache for classification results; a default TTLCache is
                created from AI_CACHE_TTL_SECONDS / AI_CACHE_MAXSIZE when omitted
        """
        self.api_key = os.getenv('AI_API_KEY', '')
        self.api_url = os.getenv('AI_API_URL', 'https://api.openai.com/v1').rstrip('/')
        self.model = os.getenv('AI_MODEL', 'gpt-4o-mini')
        self.timeout = int(os.getenv('AI_TIMEOUT', '20'))

        if cache is None:
            cache = TTLCache(
                maxsize=int(os.getenv('AI_CACHE_MAXSIZE', '512')),
                ttl_seconds=int(os.getenv('AI_CACHE_TTL_SECONDS', str(6 * 3600)))
            )
        self.cache = cache

        logger.info(f"TaskClassifier initialized: model={self.model}, enabled={self.enabled}")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key.strip())

    # =========================================================================
    # Public API
    # =========================================================================

    def classify(self, description: str) -> TaskClassification:
        """Classify a task description.

        Args:
            description: Free-text task entered by the user

        Returns:
            TaskClassification with source 'ai', 'rules' or 'cache'
        """
        if description is not None and not isinstance(description, str):
            raise ValueError("Task description must be a string")
        description = (description or '').strip()
        if not description:
            raise ValueError("Task description is required")

        cache_key = self.cache.make_key({'description': description.lower()})
        cached = self.cache.get(cache_key)
        if cached is not None:
            CACHE_HITS.inc()
            structured_logger.cache_hit('task_classification')
            AI_REQUESTS.labels(source='cache').inc()
            return cached.model_copy(update={'source': 'cache'})

        CACHE_MISSES.inc()
        structured_logger.cache_miss('task_classification')

        start_time = time.time()
        result = None
        if self.enabled:
            result = self._classify_with_llm(description)
        if result is None:
            result = self.classify_with_rules(description)

        AI_REQUESTS.labels(source=result.source).inc()
        structured_logger.ai_classification(
            source=result.source,
            category=result.category.value,
            difficulty=result.difficulty.value,
            energy_balls=result.energy_balls,
            latency_ms=int((time.time() - start_time) * 1000)
        )

        self.cache.set(cache_key, result)
        return result

    def classify_with_rules(self, description: str) -> TaskClassification:
        """Keyword-based classification used without AI."""
        config = load_config()
        text = description.lower()

        category = 'habit' if any(k in text for k in config['habit_keywords']) else 'todo'

        if len(description) > 50:
            difficulty = 'hard'
        elif len(description) > 20:
            difficulty = 'medium'
        else:
            difficulty = 'easy'

        return TaskClassification(
            category=category,
            title=description[:200],
            difficulty=difficulty,
            skill_name=self._guess_skill(text, config['core_skills']),
            energy_balls=DIFFICULTY_ENERGY[difficulty],
            source='rules'
        )

    def invalidate_cache(self) -> int:
        return self.cache.invalidate()

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _guess_skill(text: str, skills: Dict[str, list]) -> Optional[str]:
        words = set(text.replace(',', ' ').replace('.', ' ').split())
        best_name, best_hits = None, 0
        for name, keywords in skills.items():
            hits = sum(1 for k in keywords if k in words)
            if hits > best_hits:
                best_name, best_hits = name, hits
        return best_name

    def _classify_with_llm(self, description: str) -> Optional[TaskClassification]:
        prompt = TASK_CLASSIFICATION_PROMPT.format(
            description=description.replace('"', "'"),
            skills=format_skill_list(load_config()['core_skills'])
        )
        response = self._call_api(prompt, SYSTEM_PROMPT)
        data = self._parse_json_response(response)
        if data is None:
            return None

        data.setdefault('title', description[:200])
        data['source'] = 'ai'
        try:
            return TaskClassification.model_validate(data)
        except ValidationError as e:
            logger.warning(f"LLM classification failed validation: {e.error_count()} errors")
            return None

    def _call_api(self, prompt: str, system_prompt: str = None) -> Optional[str]:
        """Make a call to the chat completions API."""
        start_time = time.time()
        error_type = None

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            response = requests.post(
                f"{self.api_url}/chat/completions",
                headers=headers,
                json={
                    "model": self.model,
                    "messages": messages,
                    "response_format": {"type": "json_object"},
                    "temperature": 0.2,
                    "max_tokens": 200
                },
                timeout=self.timeout
            )

            duration = time.time() - start_time

            if response.status_code == 200:
                result = response.json()
                usage = result.get('usage', {})
                record_ai_usage(
                    duration_seconds=duration,
                    input_tokens=usage.get('prompt_tokens', 0),
                    output_tokens=usage.get('completion_tokens', 0)
                )
                content = result.get('choices', [{}])[0].get('message', {}).get('content', '')
                logger.info(f"AI classification call: tokens={usage.get('total_tokens', 0)}, duration={duration:.2f}s")
                return content

            error_type = f"status_{response.status_code}"
            logger.error(f"AI API returned status {response.status_code}: {response.text[:200]}")

        except requests.exceptions.Timeout:
            error_type = 'timeout'
            logger.error(f"AI API timeout after {self.timeout}s")
        except requests.exceptions.ConnectionError:
            error_type = 'connection_error'
            logger.error("AI API connection error")
        except (requests.exceptions.RequestException, ValueError) as e:
            error_type = type(e).__name__
            logger.error(f"AI API call error: {e}")

        record_ai_usage(duration_seconds=time.time() - start_time, error=error_type)
        return None

    def _parse_json_response(self, response: Optional[str]) -> Optional[Dict]:
        """Parse JSON from LLM response."""
        if not response:
            return None

        try:
            parsed = json.loads(response)
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

        # Try to extract JSON object from surrounding text
        start = response.find('{')
        end = response.rfind('}') + 1
        if start != -1 and end > start:
            try:
                parsed = json.loads(response[start:end])
                return parsed if isinstance(parsed, dict) else None
            except json.JSONDecodeError:
                pass

        logger.error(f"Failed to parse JSON from response: {response[:200]}")
        return None
