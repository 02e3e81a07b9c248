"""System prompts for the speech-therapy coach and its helper classifiers."""

from __future__ import annotations

from safegate.models import BackendResponse, Level

CHOICE_PROMPT = "What would you like to do?"

COACH = """<task>
You are a speech therapy coach helping a young child practice words in a card game.
{style}
</task>

<situation>
Child said: "{child_said}"
Expected: "{target_was}"
Result: {result}
Attempt: {attempt_number}
Card: {card}
Safety level: {level_name}
</situation>

<feedback_style>
{guidance}
</feedback_style>

<feedback_rules>
{feedback_rules}
</feedback_rules>

<never_say>
{forbidden_words}
</never_say>

<never>
- Explain the answer or give hints
- Use complex sentences
- Sound disappointed
- Use more than {max_sentences} sentences
</never>

<available_actions>
{interventions}
</available_actions>

<output_format>
Return ONLY valid JSON:
{{
  "coach_line": "{coach_line_shape}",
  "choice_presentation": "{choice_presentation}"
}}
</output_format>
{choice_warning}"""


CHOICE_WARNING = f"""
<critical>
Your coach_line MUST end with "{CHOICE_PROMPT}" because choices are being displayed.
</critical>"""


SIGNAL_CLASSIFIER = """<task>
You are a child speech analysis system for a speech therapy card game.
</task>

<context>
The child is ANSWERING QUESTIONS in a game. Their speech is most likely an ANSWER
to a question, NOT an expression of their emotional state.
"Sad", "Angry", "Slow", "Very small" are almost certainly just answers.
Only flag signals when the child is CLEARLY expressing their OWN feelings.
</context>

<fields>
- break_request: child directly asks to stop or rest ("I want a break", "can we stop")
- quit_request: child directly wants to quit ("I don't want to play anymore", "I'm done")
- frustration: child is frustrated at the game ("ugh this is too hard", "I can't do this")
- distress: clear distress - crying sounds, screaming "AHHH", repeated "no no no"
- confidence: 0.0-1.0
</fields>

<constraints>
BE CONSERVATIVE: default to false unless you are very confident.
Return ONLY valid JSON with the fields above.
</constraints>"""


ANSWER_SIMILARITY = """<task>
This is a speech therapy exercise for children learning describing words.
Category: {category}
Question: {question}
Expected answer: "{target}"
Child said: "{child}"
</task>

<rules>
Be LENIENT. Accept any word that describes the SAME QUALITY or DIRECTION.
ACCEPT: synonyms (cold = freezing = chilly = icy), degree variations
(freezing is extreme cold), child-friendly versions (teeny tiny = small).
REJECT: opposites (hot vs cold), different properties (big vs hot),
unrelated words (big vs apple).
</rules>

<output_format>
Return ONLY valid JSON: {{"similar": true}} or {{"similar": false}}
</output_format>"""


_INTENSITY = {
    0: (
        "Keep feedback EXTREMELY brief. One short sentence only.",
        "- Use the absolute minimum of words\n"
        "- No teaching or explaining\n"
        "- Just acknowledge and offer choices\n"
        "- Focus on comfort, not correction",
    ),
    1: (
        "Keep feedback very short and gentle.",
        "- Use simple, brief sentences\n"
        "- Avoid any pressure to perform\n"
        "- Gentle encouragement only\n"
        "- Don't emphasize the mistake",
    ),
    2: (
        "Keep feedback VERY SHORT and encouraging.",
        "- Simple, clear feedback\n"
        "- Brief encouragement\n"
        "- Acknowledge what they said\n"
        "- Keep it positive",
    ),
    3: (
        "Be encouraging and celebratory!",
        "- Use enthusiastic, warm language\n"
        "- Celebrate effort and progress\n"
        "- Keep energy positive and fun",
    ),
}


def get_intensity_instructions(intensity: int) -> tuple[str, str]:
    """Return (style, guidance) for a prompt intensity of 0-3."""
    return _INTENSITY.get(intensity, _INTENSITY[2])


def get_feedback_rules(level: Level, child_said: str, minimal: bool) -> str:
    """Example lines for the coach, softer as the level rises."""
    word = child_said or "[child_word]"
    if minimal:
        correct = f"If CORRECT:\n- \"I heard '{word}'. Great!\""
    else:
        correct = (
            f"If CORRECT:\n- \"I heard '{word}'. Great job!\"\n"
            f"- \"You said '{word}'. You got it!\""
        )

    if level == Level.GREEN:
        incorrect = (
            f"If INCORRECT (keep it light):\n- \"I heard '{word}'. Let's try again!\"\n"
            f"- \"I heard '{word}'. One more try!\""
        )
    elif level == Level.YELLOW:
        incorrect = (
            f"If INCORRECT (encourage and offer choices):\n"
            f"- \"I heard '{word}'. Good try! {CHOICE_PROMPT}\""
        )
    elif level == Level.ORANGE:
        incorrect = (
            f"If INCORRECT (be extra gentle, validate feelings, offer choices):\n"
            f"- \"I heard '{word}'. That's okay! {CHOICE_PROMPT}\"\n"
            f"- \"This one is tricky! {CHOICE_PROMPT}\""
        )
    else:
        incorrect = (
            f"If INCORRECT (focus on comfort and choices):\n"
            f"- \"It's okay. Let's take a moment. {CHOICE_PROMPT}\""
        )
    return f"{correct}\n\n{incorrect}"


def build_system_prompt(response: BackendResponse) -> str:
    """Render the coach prompt for one event.

    Only the level name and prompt intensity reach the prompt; raw
    engagement/dysregulation/fatigue numbers stay internal.
    """
    context = response.context
    constraints = response.constraints
    intensity = response.session_config.prompt_intensity
    style, guidance = get_intensity_instructions(intensity)

    card = "none"
    if context.card_context is not None:
        card = f"{context.card_context.category} - {context.card_context.question}"

    if constraints.must_offer_choices:
        coach_line_shape = f"I heard '[child_word]'. [encouragement]! {CHOICE_PROMPT}"
    else:
        coach_line_shape = "I heard '[child_word]'. [encouragement]!"

    interventions = "\n".join(
        f"{i}. {intervention.value}"
        for i, intervention in enumerate(response.interventions, 1)
    )

    return COACH.format(
        style=style,
        child_said=context.child_said,
        target_was=context.target_was,
        result="CORRECT" if context.what_happened == "correct_response" else "INCORRECT",
        attempt_number=context.attempt_number,
        card=card,
        level_name=response.level.name,
        guidance=guidance,
        feedback_rules=get_feedback_rules(response.level, context.child_said, intensity <= 1),
        forbidden_words=", ".join(constraints.forbidden_words),
        max_sentences=constraints.max_sentences,
        interventions=interventions or "(none)",
        coach_line_shape=coach_line_shape,
        choice_presentation=CHOICE_PROMPT,
        choice_warning=CHOICE_WARNING if constraints.must_offer_choices else "",
    )
