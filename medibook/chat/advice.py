import logging
import re

logger = logging.getLogger(__name__)

ADVICE_START_TAG = '[ADVICE_START]'
ADVICE_END_TAG = '[ADVICE_END]'

_WHITESPACE_RUN = re.compile(r'\s{2,}')


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RUN.sub(' ', text).strip()


def extract_advice(text: str) -> tuple[str, str | None]:
    """Split the advice block out of a model reply.

    Returns the conversational text without the block and its markers, and
    the advice itself. Missing, reversed or half-present markers leave the
    text alone and yield no advice.
    """
    start_index = text.find(ADVICE_START_TAG)
    end_index = text.find(ADVICE_END_TAG)

    if start_index == -1 or end_index == -1 or end_index < start_index:
        if start_index != -1 or end_index != -1:
            logger.warning('Found advice tags but they were mismatched or out of order. Advice not extracted.')
        return collapse_whitespace(text), None

    advice = text[start_index + len(ADVICE_START_TAG):end_index].strip()
    text_before = text[:start_index].strip()
    text_after = text[end_index + len(ADVICE_END_TAG):].strip()
    remaining = collapse_whitespace(f'{text_before} {text_after}')

    logger.debug('Extracted advice block of %d characters', len(advice))
    return remaining, advice or None
