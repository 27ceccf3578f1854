"""
Versioned classifier prompts.
"""
from __future__ import annotations

from typing import Dict, Literal, Optional

PromptKey = Literal["stance_source", "stance_title"]

DEFAULT_PROMPT_VERSION = "v1"

SYSTEM_PROMPT = "You output only JSON. No prose."

_LABEL_CHOICES = '["Extreme-Left","Left","Left-Center","Least Biased","Right-Center","Right","Extreme-Right"]'

PROMPT_VERSIONS: Dict[str, Dict[str, str]] = {
    "v1": {
        # Input carries SOURCE_BIAS, TITLE and the comment bodies
        "stance_source": (
            "You are a political discussion sentiment and editorial alignment analyzer. "
            "Determine whether the Reddit comment aggregate aligns with the editorial stance of the "
            "ORIGINAL LINKED SOURCE. Use the provided SOURCE_BIAS as the source stance context. "
            "Respond with strict JSON only, using keys alignment(one of aligns|opposes|mixed|unclear), "
            "alignment_score(number -1..1), confidence(number 0..1), reasoning(brief)."
        ),
        # Two steps: infer the title stance, then judge the comments against it
        "stance_title": (
            "You are a political discussion sentiment and editorial alignment analyzer. "
            "First, infer the political/editorial stance expressed by the POST TITLE. Then, determine "
            "whether the Reddit comment aggregate aligns with that inferred stance. Respond with strict "
            f"JSON only, using keys stance_label(one of {_LABEL_CHOICES} or \"none\"), "
            "stance_score(number 0..10 or null), alignment(one of aligns|opposes|mixed|unclear), "
            "alignment_score(number -1..1), confidence(number 0..1), reasoning(brief)."
        ),
    },
}

# Provider specific overrides by provider -> version -> key (empty by default)
PROVIDER_OVERRIDES: Dict[str, Dict[str, Dict[str, str]]] = {}


def default_prompt(key: str, version: str = DEFAULT_PROMPT_VERSION) -> str:
    """
    Look up the base prompt for a key and version.

    Raises:
        ValueError: If the version or key is unknown
    """
    prompts = PROMPT_VERSIONS.get(version)
    if prompts is None:
        raise ValueError(f"Unknown prompt version: {version}")
    prompt = prompts.get(key)
    if prompt is None:
        raise ValueError(f"Unknown prompt key: {key}")
    return prompt


def resolve_prompt(
    provider: str,
    key: str,
    version: str = DEFAULT_PROMPT_VERSION,
    override: Optional[str] = None,
) -> str:
    """Explicit override, then provider-specific prompt, then the version default."""
    if override and override.strip():
        return override
    specific = PROVIDER_OVERRIDES.get(provider, {}).get(version, {}).get(key)
    if specific and specific.strip():
        return specific
    return default_prompt(key, version)
