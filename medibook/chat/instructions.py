import logging
from pathlib import Path
from threading import Lock

from medibook.core import config

logger = logging.getLogger(__name__)

FALLBACK_INSTRUCTIONS = 'You are a helpful medical assistant. Respond clearly and concisely.'
USER_NAME_PLACEHOLDER = '{{userName}}'

_template_lock = Lock()
_base_template: str | None = None


def load_base_template() -> str:
    global _base_template

    if _base_template is not None:
        return _base_template

    with _template_lock:
        if _base_template is not None:
            return _base_template

        try:
            _base_template = Path(config.CHAT_INSTRUCTIONS_PATH).read_text(encoding='utf-8')
            logger.info('Base assistant instructions loaded from %s', config.CHAT_INSTRUCTIONS_PATH)
        except OSError:
            logger.exception('Could not load assistant instructions from %s; using fallback.', config.CHAT_INSTRUCTIONS_PATH)
            _base_template = FALLBACK_INSTRUCTIONS

        return _base_template


def build_system_instruction(user_name: str | None) -> str:
    return load_base_template().replace(USER_NAME_PLACEHOLDER, user_name or 'the user')


def reset_template_cache() -> None:
    global _base_template

    with _template_lock:
        _base_template = None
