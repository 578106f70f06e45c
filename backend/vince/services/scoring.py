"""Persuasion scoring: message -> score delta, plus the reply text bands.

Everything here is pure. Lexicon entries are lower-case stems matched as
substrings of the lower-cased message, once per occurrence.
"""

POSITIVE_TERMS = (
    'porque', 'evidência', 'prova', 'fato', 'lógic', 'razão', 'estudo',
    'pesquisa', 'científic', 'dados', 'estatístic', 'expert', 'especialista',
)
STRONG_POSITIVE_TERMS = (
    'comprovad', 'inquestionáve', 'óbvi', 'definitiv', 'irrefutáve',
)
HEDGING_TERMS = (
    'acho', 'talvez', 'parece', 'suponho', 'acredito', 'opinião', 'sentimento',
)

POSITIVE_WEIGHT = 8
STRONG_POSITIVE_WEIGHT = 15
HEDGING_WEIGHT = -5
LENGTH_BONUSES = ((100, 5), (200, 10))  # (length strictly above, bonus), cumulative
DIGIT_BONUS = 8
CAPS_PENALTY = -10
CAPS_MIN_LENGTH = 10

MIN_DELTA = -20
MAX_DELTA = 25
MIN_SCORE = 0
MAX_SCORE = 100


def _occurrences(text: str, terms) -> int:
    return sum(text.count(term) for term in terms)


def score(message: str, current_score: int) -> int:
    """Return the score delta for ``message``, clamped to [MIN_DELTA, MAX_DELTA].

    ``current_score`` is accepted so callers pass the full context, but the
    heuristic only looks at the message. Blank messages must be rejected by
    the caller before scoring.
    """
    lowered = message.lower()
    delta = 0
    delta += POSITIVE_WEIGHT * _occurrences(lowered, POSITIVE_TERMS)
    delta += STRONG_POSITIVE_WEIGHT * _occurrences(lowered, STRONG_POSITIVE_TERMS)
    delta += HEDGING_WEIGHT * _occurrences(lowered, HEDGING_TERMS)

    length = len(message)
    for threshold, bonus in LENGTH_BONUSES:
        if length > threshold:
            delta += bonus

    if any(ch.isdigit() for ch in message):
        delta += DIGIT_BONUS

    if length > CAPS_MIN_LENGTH and message == message.upper():
        delta += CAPS_PENALTY

    return max(MIN_DELTA, min(MAX_DELTA, delta))


def apply_delta(current: int, delta: int) -> int:
    """Apply delta and clamp to 0..100."""
    return max(MIN_SCORE, min(MAX_SCORE, current + delta))


def reply_for(delta: int, new_score: int, win_threshold: int) -> str:
    """Pick the AI reply text for a scored message."""
    if new_score >= win_threshold:
        return "🎉 Parabéns! Você me convenceu completamente! Seus argumentos são irrefutáveis!"
    if delta > 15:
        return "Uau! Esse é um argumento muito forte! Estou impressionado com sua lógica."
    if delta > 8:
        return "Muito bom ponto! Você está me convencendo cada vez mais."
    if delta > 0:
        return "Entendo seu ponto. Continue, estou ouvindo..."
    if delta < -5:
        return "Hmm, esse argumento não me convence muito. Tem algo mais sólido?"
    return "Interessante perspectiva. O que mais você tem a dizer?"
