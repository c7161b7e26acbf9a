"""
Prompt construction for generate and improve requests.

Adapters turn a NormalizedRequest into chat messages through this module so
every backend sees the same instructions.
"""

from enum import Enum
from typing import Dict, List

from .requests import NormalizedRequest, Operation

GENERATION_SYSTEM_PROMPT = (
    "You are a professional content writer. Write clear, well-structured "
    "content that matches the request. Return only the content."
)

IMPROVEMENT_SYSTEM_PROMPT = (
    "You are a professional editor. You are improving existing content. "
    "Return only the improved content, without commentary."
)


class ImprovementType(Enum):
    """Kinds of improvement an editor can ask for."""
    GRAMMAR = "grammar"
    STYLE = "style"
    CLARITY = "clarity"
    ENGAGEMENT = "engagement"
    SEO = "seo"


IMPROVEMENT_INSTRUCTIONS: Dict[ImprovementType, str] = {
    ImprovementType.GRAMMAR: "Please improve the grammar and correct any errors in the following content:\n\n",
    ImprovementType.STYLE: "Please improve the writing style and make this content more engaging:\n\n",
    ImprovementType.CLARITY: "Please improve the clarity and make this content easier to understand:\n\n",
    ImprovementType.ENGAGEMENT: "Please make this content more engaging and compelling for readers:\n\n",
    ImprovementType.SEO: "Please optimize this content for search engines while maintaining readability:\n\n",
}


def build_improvement_prompt(improvement_type: str, content: str) -> str:
    """Prefix content with the instruction for its improvement type.

    Unknown types fall back to a style improvement.
    """
    try:
        kind = ImprovementType(str(improvement_type).lower())
    except ValueError:
        kind = ImprovementType.STYLE
    return IMPROVEMENT_INSTRUCTIONS[kind] + content


def build_messages(request: NormalizedRequest) -> List[Dict[str, str]]:
    """Build system + user chat messages for a request.

    ``parameters.extra["system_prompt"]`` replaces the default system prompt
    (workflow templates supply their own).
    """
    extra = request.parameters.extra
    if request.operation == Operation.IMPROVE:
        system = extra.get("system_prompt") or IMPROVEMENT_SYSTEM_PROMPT
        user = build_improvement_prompt(
            extra.get("improvement_type", ImprovementType.STYLE.value),
            request.prompt_or_content,
        )
    else:
        system = extra.get("system_prompt") or GENERATION_SYSTEM_PROMPT
        user = request.prompt_or_content

    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]
