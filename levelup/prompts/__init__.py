"""
Level Up Solo AI Prompts
Prompts for task classification via an OpenAI-compatible chat API.

Format: JSON-only responses
"""

# =============================================================================
# SYSTEM PROMPT
# =============================================================================

SYSTEM_PROMPT = """You are the task coach of Level Up Solo, a gamified personal growth tracker.

Users write short free-text tasks. You classify them so the app can track
habits, award experience to skills and budget "energy balls".

OUTPUT RULES:
1. ALWAYS respond with VALID JSON only - no additional text before or after
2. Use exactly the keys requested by the user prompt
3. Never invent skills outside the fixed list
"""

# =============================================================================
# TASK CLASSIFICATION
# =============================================================================

TASK_CLASSIFICATION_PROMPT = """Classify the following task description.

Task description: "{description}"

CATEGORY RULES:
- habit: repeated behaviour the user wants to build and keep up
  Examples: exercise every day, keep reading, meditate regularly, go to bed early
  Keywords: every day, daily, keep, habit, routine, regularly
- todo: a concrete task with a clear finished state, including one-off learning
  Examples: read an article, watch a tutorial, finish a report, buy groceries
  Keywords: read, watch, finish, learn, attend, buy, fix, write, research

Special cases:
- "read this blog post", "watch the tutorial", "learn feature X" -> todo
- "read every day", "build a study habit" -> habit

CORE SKILLS (choose exactly one):
{skills}

ENERGY BALLS (one ball = 15 minutes of focused work):
- easy task: 1 ball (15 minutes)
- medium task: 2-3 balls (30-45 minutes)
- hard task: 4-6 balls (60-90 minutes)

Return JSON:
{{
  "category": "habit|todo",
  "title": "short task title",
  "difficulty": "easy|medium|hard",
  "skill_name": "one core skill name",
  "energy_balls": 1-6
}}"""


def format_skill_list(skills: dict) -> str:
    """Format core skills with their example keywords for the prompt."""
    lines = []
    for name, keywords in skills.items():
        lines.append(f"- {name}: {', '.join(keywords[:5])}")
    return "\n".join(lines)
