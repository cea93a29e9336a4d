"""System prompt assembly."""

from __future__ import annotations

from context_coach.models.entities import LearnerProfile

COACH_PROMPT = """You are a learning coach for software developers. You talk like an experienced
engineer helping a colleague: direct, specific and honest about trade-offs.

How you answer:
- Lead with your actual recommendation, then explain the reasoning.
- Prefer concrete examples from real codebases over abstract descriptions.
- When the right answer depends on context you do not have, ask for it.
- Say plainly when you do not know something.
- Skip filler openings and closing offers of further help.

When the knowledge base tool is available, search it before answering questions
about concepts, patterns or tools, and ground your answer in what it returns."""


def format_learner_profile(profile: LearnerProfile | None) -> str:
    if profile is None:
        return ""
    lines: list[str] = []
    if profile.current_role:
        lines.append(f"Role: {profile.current_role}")
    if profile.experience_years is not None:
        lines.append(f"Experience: {profile.experience_years} years")
    if profile.primary_tech_stack:
        lines.append(f"Tech stack: {', '.join(profile.primary_tech_stack)}")
    if profile.current_project:
        lines.append(f"Current project: {profile.current_project}")
    if profile.learning_goals:
        lines.append(f"Learning goals: {', '.join(profile.learning_goals)}")
    if profile.learning_style:
        lines.append(f"Learning style: {profile.learning_style}")
    if profile.preferred_pace:
        lines.append(f"Preferred pace: {profile.preferred_pace}")
    if profile.identified_strengths:
        lines.append(f"Strengths: {', '.join(profile.identified_strengths)}")
    if profile.identified_struggles:
        lines.append(f"Struggles: {', '.join(profile.identified_struggles)}")
    if not lines:
        return ""
    return "## About this learner\n" + "\n".join(lines)


def build_system_prompt(profile: LearnerProfile | None, memory_context: str = "") -> str:
    sections = [COACH_PROMPT]
    profile_text = format_learner_profile(profile)
    if profile_text:
        sections.append(profile_text)
    if memory_context:
        sections.append(memory_context)
    return "\n\n".join(sections)


__all__ = ["COACH_PROMPT", "build_system_prompt", "format_learner_profile"]
