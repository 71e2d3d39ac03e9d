from sparkagent.specialists.base import SpecialistAgent
from sparkagent.specialists.planner import PlannerAgent
from sparkagent.specialists.researcher import ResearchAgent
from sparkagent.specialists.synthesizer import SynthesizerAgent

__all__ = [
    "PlannerAgent",
    "ResearchAgent",
    "SpecialistAgent",
    "SynthesizerAgent",
]
