"""Prompt templates for chunked profile analysis.

Each profile kind has four prompts, one per chunk, that ask for the JSON
shape of the matching chunk-result model. Later prompts carry a rendering of
what earlier chunks found so the model refines instead of starting over:

- chunk 2 gets ``basics_context`` (identity only)
- chunk 3 gets ``accumulated_context`` (identity, vibes, archetype, signals)
- chunk 4 gets ``full_context`` (everything so far)

Chunk 1 gets the frame quality hints instead, when there are any.
"""

from __future__ import annotations

from typing import Callable

from profilestream.models import MatchProfile, ProfileKind, SelfProfile

# =============================================================================
# Shared Fragments
# =============================================================================

MATCH_SYSTEM_PROMPT = """You are an experienced dating coach reading screenshots of someone else's dating app profile. You are careful to separate what is visible from what you infer, and you never invent details that are not on screen."""

SELF_SYSTEM_PROMPT = """You are an experienced dating coach helping a person understand how their OWN dating profile comes across. Lead with strengths, be honest about what could work better, and keep every observation constructive."""

QUALITY_HINTS_SECTION = """FRAME QUALITY HINTS (from automated analysis):
{hints}"""

THUMBNAIL_RULES = """Choosing thumbnailIndex:
1. Pick a frame with a clearly visible face, never a text screen or a black frame
2. When quality hints are given, prefer frames marked good quality
3. Skip frames flagged LIKELY DARK or LIKELY TEXT-HEAVY
4. If every frame is poor, take the least bad one (not dark beats dark)"""

AGENDAS_AND_TACTICS = """## Agendas and tactics

An AGENDA is what someone wants from an interaction:
1. "Find out something important" (testing compatibility, seeking information or validation)
2. "Convince someone of something important" (selling their value, lifestyle or beliefs)
3. "Make another character feel good" (charming, flattering, creating warmth)
4. "Make another character feel bad" (intimidating, provoking jealousy, asserting dominance)

A TACTIC is how they pursue it:
- Positive: Charm, Seduce, Tease, Flatter, Reassure, Reward, Sympathize, Promise, Bargain
- Negative: Bully, Condemn, Dismiss, Dominate, Threaten, Stonewall, Taunt, Whine, Demand
- Neutral: Challenge, Confess, Reveal, Educate, Invite, Lead"""

JSON_ONLY = "Return the raw JSON object only, without markdown."


# =============================================================================
# Match Prompts
# =============================================================================

MATCH_BASICS_PROMPT = """These {frame_count} screenshots are the START of a dating app profile.
Pull out the basic facts only. Speed and accuracy matter more than depth.

{quality_hints}

Respond with JSON in exactly this shape:
{{
  "name": "string or null",
  "age": "number or null",
  "location": "string or null - city or area shown",
  "job": "string or null - job title or employer if shown",
  "app": "Hinge | Tinder | Bumble | Unknown",
  "thumbnailIndex": "0-{last_index} - frame with the clearest face"
}}

{thumbnail_rules}

Use null for anything not clearly visible. {json_only}"""

MATCH_IMPRESSIONS_PROMPT = """These {frame_count} screenshots continue the same dating app profile.
What you already know:
{basics_context}

Read the VIBE and FIRST IMPRESSIONS these photos give off: body language, settings, clothing, who they are with.

Respond with JSON in exactly this shape:
{{
  "vibes": ["2-4 word vibe tags, e.g. 'Adventure Seeker', 'Urban Professional'"],
  "firstImpressions": ["2-4 short observations, e.g. 'Projects confidence through posture'"],
  "emergingArchetype": "1-2 sentences: who is this person and what do they want to project?",
  "archetypeConfidence": "0-50 - this is an early read, keep it low"
}}

{json_only}"""

MATCH_OBSERVATIONS_PROMPT = """These {frame_count} screenshots continue the same dating app profile.
What you know so far:
{accumulated_context}

Go through every distinct photo and every visible prompt answer in detail. Notice what they leave out as well as what they say.

Respond with JSON in exactly this shape:
{{
  "photos": [
    {{
      "description": "one sentence on what the photo shows",
      "vibe": "2-3 word vibe tag",
      "subtext": "one sentence on what the photo is really communicating"
    }}
  ],
  "prompts": [
    {{
      "question": "the prompt question",
      "answer": "their answer",
      "analysis": "which agenda the answer serves and what it reveals",
      "suggested_opener": {{
        "message": "a personal opener referencing this answer, at most two sentences",
        "tactic": "Tease, Challenge, Flatter, ...",
        "why_it_works": "one sentence on why it lands with this person"
      }}
    }}
  ],
  "signals": ["2-4 psychological signals, e.g. 'Uses humor to deflect vulnerability'"]
}}

{json_only}"""

MATCH_FLAGS_PROMPT = """These are the FINAL {frame_count} screenshots of the dating app profile.
Everything observed so far:
{full_context}

Finish the read with flags and a psychological profile.

{agendas_and_tactics}

Respond with JSON in exactly this shape:
{{
  "redFlags": ["real concerns with cited evidence; empty array if none"],
  "greenFlags": ["genuinely positive signs with cited evidence"],
  "agendas": [
    {{
      "type": "one of the four agenda types",
      "evidence": "what in the profile points to it",
      "priority": "primary | secondary"
    }}
  ],
  "presentationTactics": ["tactics the profile itself uses to attract"],
  "predictedTactics": ["tactics they would likely use on a date"],
  "archetypeRefinement": "2-3 sentences: who they are, what they really want, which partner suits or triggers them",
  "finalConfidence": "50-80 - confidence in this quick read"
}}

Red flags must be real concerns, not nitpicks. {json_only}"""


# =============================================================================
# Self Prompts
# =============================================================================

SELF_BASICS_PROMPT = """These {frame_count} screenshots are the START of a screen recording of the user's OWN dating profile.
This is a self-analysis: help them see how they come across.

{quality_hints}

Respond with JSON in exactly this shape:
{{
  "name": "string or null",
  "age": "number or null",
  "location": "string or null - city or area shown",
  "occupation": "string or null - job title if shown",
  "thumbnailIndex": "0-{last_index} - frame with the clearest face",
  "initialVibes": ["2-3 word tags for what the user does well, e.g. 'Warm & Approachable'"]
}}

{thumbnail_rules}

Use null for anything not clearly visible. {json_only}"""

SELF_IMPRESSIONS_PROMPT = """These {frame_count} screenshots continue the user's own dating profile.
What you already know about them:
{basics_context}

Describe the VIBE they give off and how they present themselves, strengths first.

Respond with JSON in exactly this shape:
{{
  "vibes": ["2-4 word vibe tags, e.g. 'Creative Soul', 'Down to Earth'"],
  "archetype": "1-2 sentences on who they are, framed around their strengths",
  "archetypeConfidence": "0-50 - this is an early read, keep it low",
  "initialStrengths": ["2-3 strengths visible in how they present"],
  "communicationHints": ["1-2 notes on their communication style from any visible text"]
}}

{json_only}"""

SELF_OBSERVATIONS_PROMPT = """These {frame_count} screenshots continue the user's own dating profile.
What you know so far:
{accumulated_context}

Go through every distinct photo and any visible text in detail. Give photo feedback constructively: what works and what could improve.

Respond with JSON in exactly this shape:
{{
  "photos": [
    {{
      "description": "one sentence on what the photo shows",
      "vibe": "2-3 word vibe tag",
      "subtext": "what the photo communicates to potential matches",
      "attractiveness_notes": "constructive notes on what works or could be better"
    }}
  ],
  "signals": ["2-4 personality signals"],
  "presentationTactics": ["tactics the profile uses, e.g. 'Adventure photos to show lifestyle'"],
  "subtextAnalysis": {{
    "sexual_signaling": "how they present physically and what interest it attracts",
    "power_dynamics": "leading, equal or vulnerable, with evidence",
    "vulnerability_indicators": "which authentic parts of themselves they show",
    "disconnect": "any gap between what they say and how they present"
  }}
}}

{json_only}"""

SELF_SYNTHESIS_PROMPT = """These are the FINAL {frame_count} screenshots of the user's own dating profile.
Everything observed so far:
{full_context}

Pull it together into a synthesis and a practical strategy.

{agendas_and_tactics}

Respond with JSON in exactly this shape:
{{
  "communicationStyle": "2-3 sentences on how they naturally communicate",
  "attachmentPatterns": "2-3 sentences of observations about likely attachment patterns (not a diagnosis)",
  "attachmentConfidence": "0-100 - below 40 means too little evidence",
  "strengths": ["3-5 genuine dating strengths"],
  "growthAreas": ["2-3 next-level opportunities, not weaknesses"],
  "idealPartnerProfile": "2-3 sentences on who would suit them",
  "whatToLookFor": ["3-4 green flags this person should prioritize"],
  "whatToAvoid": ["2-3 energy-draining patterns"],
  "bioSuggestions": ["2-3 specific profile improvements"],
  "openerStyleRecommendations": ["2-3 opener styles that fit their personality"],
  "agendas": [
    {{
      "type": "one of the four agenda types",
      "evidence": "what in the profile points to it",
      "priority": "primary | secondary"
    }}
  ],
  "predictedTactics": ["tactics they would likely use on a date"],
  "archetypeRefinement": "2-3 sentences: who they are and what partner helps them thrive",
  "finalConfidence": "50-80 - confidence in this read"
}}

Always list strengths before growth areas. {json_only}"""

MATCH_PROMPTS = (
    MATCH_BASICS_PROMPT,
    MATCH_IMPRESSIONS_PROMPT,
    MATCH_OBSERVATIONS_PROMPT,
    MATCH_FLAGS_PROMPT,
)

SELF_PROMPTS = (
    SELF_BASICS_PROMPT,
    SELF_IMPRESSIONS_PROMPT,
    SELF_OBSERVATIONS_PROMPT,
    SELF_SYNTHESIS_PROMPT,
)


# =============================================================================
# Context Builders
# =============================================================================


def _or(value: object, default: str = "Unknown") -> str:
    return default if value is None or value == "" else str(value)


def _bullets(items: list[str], empty: str = "None yet") -> str:
    return "\n".join(f"- {item}" for item in items) if items else f"- {empty}"


def format_quality_hints(hints: str) -> str:
    return QUALITY_HINTS_SECTION.format(hints=hints) if hints else ""


def match_basics_context(profile: MatchProfile) -> str:
    identity = profile.identity
    return "\n".join(
        [
            f"Name: {_or(identity.name)}",
            f"Age: {_or(identity.age)}",
            f"Location: {_or(identity.location)}",
            f"Job: {_or(identity.job)}",
            f"App: {_or(identity.app)}",
        ]
    )


def match_accumulated_context(profile: MatchProfile) -> str:
    psych = profile.psychological
    return "\n\n".join(
        [
            f"IDENTITY:\n{match_basics_context(profile)}",
            f"VIBES OBSERVED:\n{_bullets(profile.photos.vibes_summary)}",
            f"EMERGING ARCHETYPE:\n{psych.emerging_archetype or 'Still forming...'}",
            f"SIGNALS PICKED UP:\n{_bullets(psych.signals)}",
        ]
    )


def match_full_context(profile: MatchProfile) -> str:
    psych = profile.psychological
    photos = [
        f"Photo {i}: {photo.vibe} - {photo.subtext}"
        for i, photo in enumerate(profile.photos.analyses, start=1)
    ]
    prompts = [
        f"Q: {prompt.question}\nA: {prompt.answer}\nAnalysis: {prompt.analysis}"
        for prompt in profile.prompts.found
    ]
    return "\n\n".join(
        [
            f"IDENTITY:\n{match_basics_context(profile)}",
            "PHOTO ANALYSES:\n" + ("\n".join(photos) if photos else "None yet"),
            "PROMPT RESPONSES:\n" + ("\n\n".join(prompts) if prompts else "None found"),
            f"VIBES:\n{_bullets(profile.photos.vibes_summary)}",
            f"EMERGING ARCHETYPE ({psych.confidence_level}% confidence):\n"
            f"{psych.emerging_archetype or 'Still forming...'}",
            f"PSYCHOLOGICAL SIGNALS:\n{_bullets(psych.signals)}",
        ]
    )


def self_basics_context(profile: SelfProfile) -> str:
    identity = profile.identity
    return "\n".join(
        [
            f"Name: {_or(identity.name)}",
            f"Age: {_or(identity.age)}",
            f"Location: {_or(identity.location)}",
            f"Occupation: {_or(identity.occupation)}",
            f"Initial Vibes: {', '.join(profile.photos.vibes_summary) or 'None yet'}",
        ]
    )


def self_accumulated_context(profile: SelfProfile) -> str:
    psych = profile.psychological
    behavioral = profile.behavioral
    return "\n\n".join(
        [
            f"IDENTITY:\n{self_basics_context(profile)}",
            f"VIBES OBSERVED:\n{_bullets(profile.photos.vibes_summary)}",
            f"EMERGING ARCHETYPE:\n{psych.archetype or 'Still forming...'}",
            f"STRENGTHS IDENTIFIED:\n{_bullets(behavioral.strengths)}",
            f"COMMUNICATION HINTS:\n{behavioral.communication_style or 'None yet'}",
        ]
    )


def self_full_context(profile: SelfProfile) -> str:
    psych = profile.psychological
    subtext = psych.subtext_analysis
    photos = [
        f"{i}. {photo.vibe}: {photo.description}"
        for i, photo in enumerate(profile.photos.analyses, start=1)
    ]
    return "\n\n".join(
        [
            f"IDENTITY:\n{self_basics_context(profile)}",
            f"VIBES:\n{_bullets(profile.photos.vibes_summary)}",
            f"EMERGING ARCHETYPE ({psych.confidence_level}% confidence):\n"
            f"{psych.archetype or 'Still forming...'}",
            f"STRENGTHS IDENTIFIED:\n{_bullets(profile.behavioral.strengths)}",
            f"PRESENTATION TACTICS USED:\n{_bullets(psych.presentation_tactics)}",
            "PHOTOS ANALYZED:\n" + ("\n".join(photos) if photos else "None yet"),
            "SUBTEXT ANALYSIS:\n"
            f"- Sexual signaling: {subtext.sexual_signaling or 'Not assessed'}\n"
            f"- Power dynamics: {subtext.power_dynamics or 'Not assessed'}\n"
            f"- Vulnerability: {subtext.vulnerability_indicators or 'Not assessed'}\n"
            f"- Disconnect: {subtext.disconnect or 'None noted'}",
            f"COMMUNICATION HINTS:\n{profile.behavioral.communication_style or 'None yet'}",
        ]
    )


_CONTEXT_BUILDERS: dict[ProfileKind, tuple[Callable, Callable, Callable]] = {
    ProfileKind.MATCH: (match_basics_context, match_accumulated_context, match_full_context),
    ProfileKind.SELF: (self_basics_context, self_accumulated_context, self_full_context),
}


# =============================================================================
# Assembly
# =============================================================================


def system_prompt(kind: ProfileKind) -> str:
    return MATCH_SYSTEM_PROMPT if kind == ProfileKind.MATCH else SELF_SYSTEM_PROMPT


def build_chunk_prompt(
    kind: ProfileKind,
    chunk_index: int,
    profile: MatchProfile | SelfProfile,
    frame_count: int,
    quality_hints: str = "",
) -> str:
    """Render the prompt for chunk ``chunk_index`` of a ``kind`` run.

    Args:
        kind: Profile kind being built.
        chunk_index: 0-based chunk index; chunks past the last reuse the final prompt.
        profile: Accumulator as it stands before this chunk.
        frame_count: Number of frames sent with the prompt.
        quality_hints: Hint lines, used only by the first chunk.
    """
    templates = MATCH_PROMPTS if kind == ProfileKind.MATCH else SELF_PROMPTS
    position = min(chunk_index, len(templates) - 1)
    basics, accumulated, full = _CONTEXT_BUILDERS[kind]

    values = {
        "frame_count": frame_count,
        "last_index": max(frame_count - 1, 0),
        "json_only": JSON_ONLY,
        "thumbnail_rules": THUMBNAIL_RULES,
        "agendas_and_tactics": AGENDAS_AND_TACTICS,
    }
    if position == 0:
        values["quality_hints"] = format_quality_hints(quality_hints)
    elif position == 1:
        values["basics_context"] = basics(profile)
    elif position == 2:
        values["accumulated_context"] = accumulated(profile)
    else:
        values["full_context"] = full(profile)

    return templates[position].format(**values)
