"""
Narrative framework registry.

Each framework declares its section order, per-section help text and when
it is a good fit. The section tables below (keywords, preferred tools,
edit hints) drive how the narrative extractor fills a section regardless of
which framework it belongs to.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class FrameworkType(str, Enum):
    STAR = "STAR"
    STARL = "STARL"
    CAR = "CAR"
    PAR = "PAR"
    SAR = "SAR"
    SOAR = "SOAR"
    SHARE = "SHARE"
    CARL = "CARL"


DEFAULT_FRAMEWORK = FrameworkType.STAR


@dataclass(frozen=True)
class SectionDefinition:
    name: str
    label: str
    description: str
    prompt: str


@dataclass(frozen=True)
class RecommendWhen:
    roles: tuple[str, ...] = ()
    interview_types: tuple[str, ...] = ()
    story_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class NarrativeFramework:
    type: FrameworkType
    name: str
    tagline: str
    description: str
    sections: tuple[SectionDefinition, ...]
    best_for: tuple[str, ...] = ()
    not_ideal_for: tuple[str, ...] = ()
    recommend_when: RecommendWhen = field(default_factory=RecommendWhen)

    @property
    def section_order(self) -> list[str]:
        return [s.name for s in self.sections]

    def section(self, name: str) -> SectionDefinition | None:
        return next((s for s in self.sections if s.name == name), None)


def _s(name: str, label: str, description: str, prompt: str) -> SectionDefinition:
    return SectionDefinition(name=name, label=label, description=description, prompt=prompt)


FRAMEWORKS: dict[FrameworkType, NarrativeFramework] = {
    FrameworkType.STAR: NarrativeFramework(
        type=FrameworkType.STAR,
        name="STAR",
        tagline="The classic behavioral interview format",
        description="Situation-Task-Action-Result. Clear, structured and universally understood.",
        sections=(
            _s("situation", "Situation", "The context and background", "What was happening? What was the problem or opportunity?"),
            _s("task", "Task", "Your specific responsibility", "What were you asked to do? What was your role?"),
            _s("action", "Action", "What you did", "What specific steps did you take? How did you approach it?"),
            _s("result", "Result", "The outcome and impact", "What happened? Quantify with numbers if possible."),
        ),
        best_for=("Behavioral interviews", "Most interview scenarios", "First-time interviewees"),
        not_ideal_for=("Executive presentations", "Very technical deep-dives"),
        recommend_when=RecommendWhen(
            roles=("Software Engineer", "Product Manager", "Designer", "Data Analyst"),
            interview_types=("Behavioral", "FAANG", "General"),
            story_types=("Achievement", "Problem-solving", "Collaboration"),
        ),
    ),
    FrameworkType.STARL: NarrativeFramework(
        type=FrameworkType.STARL,
        name="STAR-L",
        tagline="STAR plus Learning for growth stories",
        description="STAR with an added Learning section. Shows self-awareness and a growth mindset.",
        sections=(
            _s("situation", "Situation", "The context and background", "What was happening? What was the challenge?"),
            _s("task", "Task", "Your specific responsibility", "What were you trying to accomplish?"),
            _s("action", "Action", "What you did", "What steps did you take?"),
            _s("result", "Result", "The outcome", "What happened? Include both successes and setbacks."),
            _s("learning", "Learning", "What you learned", "What did you take away? How did this change your approach?"),
        ),
        best_for=("Failure/challenge questions", "Growth-focused interviews", "Manager roles"),
        not_ideal_for=("Quick introductions", "Time-constrained responses"),
        recommend_when=RecommendWhen(
            roles=("Tech Lead", "Engineering Manager", "Senior Engineer"),
            interview_types=("Behavioral", "Leadership", "Manager"),
            story_types=("Failure", "Challenge", "Growth", "Conflict"),
        ),
    ),
    FrameworkType.CAR: NarrativeFramework(
        type=FrameworkType.CAR,
        name="CAR",
        tagline="Concise and challenge-focused",
        description="Challenge-Action-Result. A streamlined, problem-solving format for when time is limited.",
        sections=(
            _s("challenge", "Challenge", "The problem you faced", "What obstacle or challenge did you encounter?"),
            _s("action", "Action", "How you addressed it", "What did you do to overcome the challenge?"),
            _s("result", "Result", "The outcome", "What was the result of your actions?"),
        ),
        best_for=("Concise responses", "Problem-solving stories", "Technical interviews"),
        not_ideal_for=("Complex narratives", "Stories requiring context"),
        recommend_when=RecommendWhen(
            roles=("Software Engineer", "DevOps", "SRE"),
            interview_types=("Technical", "Phone Screen", "Quick"),
            story_types=("Bug fix", "Debugging", "Technical challenge"),
        ),
    ),
    FrameworkType.PAR: NarrativeFramework(
        type=FrameworkType.PAR,
        name="PAR",
        tagline="Problem-focused for technical roles",
        description="Problem-Action-Result. Emphasizes the problem definition; popular in engineering interviews.",
        sections=(
            _s("problem", "Problem", "The technical problem", "What was the technical problem? Be specific about constraints."),
            _s("action", "Action", "Your technical approach", "What was your technical solution? Include tools and technologies."),
            _s("result", "Result", "The measurable outcome", "What metrics improved? Performance numbers, cost savings, etc."),
        ),
        best_for=("Engineering interviews", "Technical problem-solving", "System design discussions"),
        not_ideal_for=("Leadership stories", "Collaboration narratives"),
        recommend_when=RecommendWhen(
            roles=("Software Engineer", "Backend Engineer", "Platform Engineer"),
            interview_types=("Technical", "System Design", "Architecture"),
            story_types=("Scaling", "Performance", "Infrastructure"),
        ),
    ),
    FrameworkType.SAR: NarrativeFramework(
        type=FrameworkType.SAR,
        name="SAR",
        tagline="Ultra-concise for quick responses",
        description="Situation-Action-Result. The most concise format, for elevator pitches and rapid-fire questions.",
        sections=(
            _s("situation", "Situation", "Brief context", "Set the scene in one sentence."),
            _s("action", "Action", "What you did", "Describe your key actions concisely."),
            _s("result", "Result", "The outcome", "State the impact in one sentence."),
        ),
        best_for=("Elevator pitches", "Quick introductions", "Time-limited responses"),
        not_ideal_for=("Complex achievements", "Stories requiring task context"),
        recommend_when=RecommendWhen(
            roles=("Any",),
            interview_types=("Networking", "Phone Screen", "Quick"),
            story_types=("Introduction", "Highlight", "Quick win"),
        ),
    ),
    FrameworkType.SOAR: NarrativeFramework(
        type=FrameworkType.SOAR,
        name="SOAR",
        tagline="Obstacle-driven for business impact",
        description="Situation-Obstacles-Actions-Results. Emphasizes challenges and business alignment.",
        sections=(
            _s("situation", "Situation", "The business context", "What was the business situation or market context?"),
            _s("obstacles", "Obstacles", "The challenges or blockers you faced", "What obstacles or challenges did you encounter?"),
            _s("actions", "Actions", "How you overcame them", "What strategy and actions did you take to overcome these obstacles?"),
            _s("results", "Results", "Business impact", "What were the measurable results and business impact?"),
        ),
        best_for=("Product management", "Business-focused interviews", "Strategic roles"),
        not_ideal_for=("Pure technical discussions", "Junior roles"),
        recommend_when=RecommendWhen(
            roles=("Product Manager", "Program Manager", "Business Analyst"),
            interview_types=("Product", "Strategy", "Business"),
            story_types=("Product launch", "Business impact", "Strategy"),
        ),
    ),
    FrameworkType.SHARE: NarrativeFramework(
        type=FrameworkType.SHARE,
        name="SHARE",
        tagline="Collaboration-focused with hindsight",
        description="Situation-Hindrances-Actions-Results-Evaluation. Emphasizes reflection and collaboration.",
        sections=(
            _s("situation", "Situation", "The context", "What was the team/organizational situation?"),
            _s("hindrances", "Hindrances", "What obstacles or challenges arose", "What hindrances or obstacles did you encounter?"),
            _s("actions", "Actions", "What you did", "What actions did you take to address the situation?"),
            _s("results", "Results", "The outcome", "What were the results of your actions?"),
            _s("evaluation", "Evaluation", "Reflection and lessons learned", "What did you learn or how would you evaluate the experience?"),
        ),
        best_for=("Leadership interviews", "Collaboration stories", "Mentorship examples"),
        not_ideal_for=("Individual contributor stories", "Quick responses"),
        recommend_when=RecommendWhen(
            roles=("Engineering Manager", "Director", "VP"),
            interview_types=("Leadership", "Manager", "Culture"),
            story_types=("Team building", "Culture change", "Mentorship"),
        ),
    ),
    FrameworkType.CARL: NarrativeFramework(
        type=FrameworkType.CARL,
        name="CARL",
        tagline="Accountability-focused for tough questions",
        description="Context-Action-Result-Learning. Best for failure and accountability questions.",
        sections=(
            _s("context", "Context", "The circumstances", "What was the situation? What pressures or constraints existed?"),
            _s("action", "Action", "What you did (or didn't do)", "What actions did you take? Be honest about mistakes."),
            _s("result", "Result", "What happened", "What was the outcome? Include negative impacts."),
            _s("learning", "Learning", "What you learned", "What did you learn? How have you changed your approach?"),
        ),
        best_for=("Failure questions", '"Tell me about a mistake"', "Accountability stories"),
        not_ideal_for=("Success stories", "Technical deep-dives"),
        recommend_when=RecommendWhen(
            roles=("Any",),
            interview_types=("Behavioral", "Amazon Leadership Principles"),
            story_types=("Failure", "Mistake", "Accountability", "Growth"),
        ),
    ),
}

QUESTION_TO_FRAMEWORK: dict[str, FrameworkType] = {
    "Tell me about yourself": FrameworkType.SAR,
    "Tell me about a time you failed": FrameworkType.CARL,
    "Tell me about a mistake": FrameworkType.CARL,
    "Tell me about a challenge": FrameworkType.CAR,
    "Tell me about a technical problem": FrameworkType.PAR,
    "Tell me about a time you led": FrameworkType.SHARE,
    "Tell me about a time you influenced": FrameworkType.SOAR,
    "Walk me through a project": FrameworkType.STAR,
    "Tell me about an achievement": FrameworkType.STAR,
    "What did you learn from": FrameworkType.STARL,
}


# ---------------------------------------------------------------------------
# Section semantics shared by all frameworks
# ---------------------------------------------------------------------------

_CONTEXT = (
    r"\b(need|problem|issue|slow|broken|currently|before|was|had|required|must|should|"
    r"failing|error|bug|outage|incident|blocker|context|background)\b"
)
_OBSTACLE = (
    r"\b(challeng\w*|problem|issue|difficult|struggle|obstacle|block\w*|barrier|impediment|"
    r"risk|threat|resistance|pushback|constraint|limitation)\b"
)
_OUTCOME = (
    r"\b(reduc(e|ed|es|ing)|improv(e|ed|es|ing)|increas(e|ed|es|ing)|from .{1,30} to|closes?|"
    r"fix(ed|es)?|resolv(e|ed|es)|complet(e|ed)|deliver(ed)?|ship(ped)?|launch(ed)?|"
    r"achiev(e|ed)|success)\b|\d+%|\d+x\b|\d+ ?(ms|seconds?|minutes?|hours?|days?|users?|requests?)\b"
)
_REFLECTION = (
    r"\b(learn(ed|ing)?|realiz(e|ed)|discover(ed)?|understand|insight|takeaway|lesson|"
    r"retrospective|reflect|hindsight|looking back|should have|could have)\b"
)

SECTION_KEYWORDS: dict[str, re.Pattern[str]] = {
    "situation": re.compile(_CONTEXT, re.IGNORECASE),
    "context": re.compile(rf"{_CONTEXT}|\b(pressure|deadline|constraint)\b", re.IGNORECASE),
    "challenge": re.compile(_OBSTACLE, re.IGNORECASE),
    "obstacles": re.compile(_OBSTACLE, re.IGNORECASE),
    "hindrances": re.compile(_OBSTACLE, re.IGNORECASE),
    "problem": re.compile(
        r"\b(problem|issue|bug|error|failure|broken|crash|slow|latency|bottleneck|limit)\b", re.IGNORECASE
    ),
    "task": re.compile(
        r"\b(task|goal|objective|target|deliverable|requirement|milestone|sprint|assigned|responsible|need)\b",
        re.IGNORECASE,
    ),
    "action": re.compile(
        r"\b(implement(ed)?|add(ed)?|creat(e|ed)|buil(d|t)|develop(ed)?|design(ed)?|refactor(ed)?|"
        r"optimiz(e|ed)|updat(e|ed)|configur(e|ed)|deploy(ed)?|migrat(e|ed)|integrat(e|ed)|led|"
        r"drove|initiated|coordinated)\b",
        re.IGNORECASE,
    ),
    "result": re.compile(_OUTCOME, re.IGNORECASE),
    "learning": re.compile(_REFLECTION, re.IGNORECASE),
    "evaluation": re.compile(_REFLECTION, re.IGNORECASE),
}
SECTION_KEYWORDS["actions"] = SECTION_KEYWORDS["action"]
SECTION_KEYWORDS["results"] = SECTION_KEYWORDS["result"]

# Which evidence a section draws on
EARLY_SECTIONS = frozenset({"situation", "context", "challenge", "problem", "obstacles", "hindrances"})
LATE_SECTIONS = frozenset({"result", "results", "learning", "evaluation"})
ACTION_SECTIONS = frozenset({"action", "actions"})
TASK_SECTIONS = frozenset({"task"})
REFLECTION_SECTIONS = frozenset({"learning", "evaluation"})

SECTION_TOOL_PREFERENCES: dict[str, tuple[str, ...]] = {
    "situation": ("jira", "confluence"),
    "context": ("jira", "confluence"),
    "problem": ("jira", "github"),
    "challenge": ("jira", "github"),
    "task": ("jira", "confluence"),
    "action": ("github", "jira"),
    "actions": ("github", "jira"),
    "result": ("github", "slack", "jira"),
    "results": ("github", "slack", "jira"),
    "learning": ("confluence", "slack"),
    "evaluation": ("confluence", "slack"),
    "obstacles": ("jira", "slack"),
    "hindrances": ("jira", "slack"),
}

SECTION_EDIT_HINTS: dict[str, str] = {
    "situation": "What was the context or background?",
    "context": "What were the circumstances or constraints?",
    "task": "What were you specifically asked to do?",
    "challenge": "What obstacle did you face?",
    "problem": "What technical problem needed solving?",
    "action": "What specific steps did you take?",
    "actions": "What specific steps did you take?",
    "result": "What was the measurable outcome?",
    "results": "What was the measurable outcome?",
    "learning": "What did you learn from this experience?",
    "evaluation": "How would you evaluate the experience looking back?",
    "obstacles": "What blocked your progress?",
    "hindrances": "What blocked your progress?",
}

MEASURABLE = re.compile(
    r"\d+(\.\d+)?\s?(%|x\b|ms\b|s\b|seconds?|minutes?|hours?|days?|users?|requests?)", re.IGNORECASE
)


def parse_framework(value: str | FrameworkType | None) -> FrameworkType:
    """
    Resolve a framework name ("star", "STAR-L", FrameworkType.CAR...).

    Raises:
        ValueError: If the name is not a registered framework
    """
    if value is None:
        return DEFAULT_FRAMEWORK
    if isinstance(value, FrameworkType):
        return value
    normalized = str(value).strip().upper().replace("-", "")
    try:
        return FrameworkType(normalized)
    except ValueError:
        raise ValueError(f"Unknown narrative framework {value!r}") from None


def get_framework(value: str | FrameworkType | None = None) -> NarrativeFramework:
    return FRAMEWORKS[parse_framework(value)]


def all_frameworks() -> list[NarrativeFramework]:
    return list(FRAMEWORKS.values())


def _overlaps(candidates: tuple[str, ...], wanted: str) -> bool:
    wanted = wanted.lower()
    return any(wanted in c.lower() or c.lower() in wanted for c in candidates)


def recommend_frameworks(
    role: str | None = None,
    interview_type: str | None = None,
    story_type: str | None = None,
) -> list[FrameworkType]:
    """
    Rank frameworks for a context. Role match scores 3, interview type and
    story type 2 each; frameworks scoring 0 are left out.
    """
    scored: list[tuple[int, int, FrameworkType]] = []
    for order, (ftype, framework) in enumerate(FRAMEWORKS.items()):
        when = framework.recommend_when
        score = 0
        if role and _overlaps(when.roles, role):
            score += 3
        if interview_type and any(interview_type.lower() in t.lower() for t in when.interview_types):
            score += 2
        if story_type and any(story_type.lower() in s.lower() for s in when.story_types):
            score += 2
        if score > 0:
            scored.append((-score, order, ftype))
    return [ftype for _, _, ftype in sorted(scored)]


def framework_for_question(question: str) -> FrameworkType | None:
    """Best framework for an interview question, matched on its known prefix."""
    lowered = question.strip().lower()
    for prefix, ftype in QUESTION_TO_FRAMEWORK.items():
        if lowered.startswith(prefix.lower()):
            return ftype
    return None
