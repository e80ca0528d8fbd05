import logging
import sys

_ROOT_LOGGER_NAME = "nestops"
_OWNED_HANDLER_ATTR = "_nestops_owned"


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in logger.handlers if getattr(handler, _OWNED_HANDLER_ATTR, False)]


def build_logger(qualifier: str, show_fallbacks: bool = False) -> logging.Logger:
    """
    Configures and returns the root logger of nestops.

    Recursive operations report silent behaviour changes at debug level: leaves that could not be
    accumulated or zeroed in place and were replaced by new values, dataclasses skipped during
    decomposition, and objects decomposed through the torch pytree registry. These records are
    only emitted when `show_fallbacks` is set.

    Records go to stdout and carry the qualifier and the originating module. Calling this function
    again replaces the handler it installed earlier; handlers attached by other code are kept.

    Args:
        qualifier: A string identifying the caller, included in every record.
        show_fallbacks: Whether debug records about in-place fallbacks and decomposition choices are emitted.

    Returns:
        A configured logging.Logger instance.
    """

    level = logging.DEBUG if show_fallbacks else logging.INFO

    nestops_logger = logging.getLogger(_ROOT_LOGGER_NAME)
    nestops_logger.setLevel(level)
    for handler in _owned_handlers(nestops_logger):
        nestops_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        f"[nestops] [{qualifier}] %(asctime)s - %(levelname)s - %(name)s - %(message)s"
    ))
    setattr(handler, _OWNED_HANDLER_ATTR, True)
    nestops_logger.addHandler(handler)
    return nestops_logger
