"""
=====================================================================
signald-webhook Template Set
=====================================================================
Renders receiver body and recipient templates with Jinja2.

Template files matched by the `templates:` globs are registered under
their file name, so receiver templates can pull them in with
`{% include "default.tmpl" %}` or `{% from "signal.tmpl" import body %}`.
Receiver `template:` and `to:` values are themselves template text and
are rendered against AlertMessage.template_data().

Undefined variables raise (StrictUndefined) so a typo in a template is
reported as a RenderError rather than rendering an empty string.
=====================================================================
"""

import re
import glob
import logging
import threading
from typing import Dict, Iterable, List, Tuple

from jinja2 import DictLoader, Environment, StrictUndefined, Template, TemplateError

from signald_webhook.errors import ConfigError, RenderError
from signald_webhook.models import AlertMessage

logger = logging.getLogger(__name__)


# =====================================================================
# ALERTMANAGER-STYLE HELPERS
# =====================================================================

def re_replace_all(text: str, pattern: str, replacement: str) -> str:
    """Regex replace; `$1` style group references are accepted."""
    return re.sub(pattern, re.sub(r"\$(\d+)", r"\\\1", replacement), text)


def sorted_pairs(mapping: Dict[str, str]) -> List[Tuple[str, str]]:
    return sorted(mapping.items())


def _build_environment(sources: Dict[str, str]) -> Environment:
    env = Environment(
        loader=DictLoader(sources),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    env.filters["toUpper"] = str.upper
    env.filters["toLower"] = str.lower
    env.filters["reReplaceAll"] = re_replace_all
    env.filters["sortedPairs"] = sorted_pairs
    return env


# =====================================================================
# TEMPLATE SET
# =====================================================================

class TemplateSet:
    """Compiled template files plus a cache of rendered-from-text templates."""

    def __init__(self, sources: Dict[str, str] = None):
        self.sources = dict(sources or {})
        self.env = _build_environment(self.sources)
        self._compiled: Dict[str, Template] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_globs(cls, patterns: Iterable[str]) -> "TemplateSet":
        """
        Load every file matched by the glob patterns.

        Raises:
            ConfigError: a matched file cannot be read or does not parse
        """
        sources: Dict[str, str] = {}
        for pattern in patterns:
            paths = sorted(glob.glob(pattern))
            if not paths:
                logger.warning(f"Template glob matched no files: {pattern}")
            for path in paths:
                try:
                    with open(path, "r") as f:
                        source = f.read()
                except OSError as e:
                    raise ConfigError(f"Error reading template {path}: {e}")
                name = path.replace("\\", "/").rsplit("/", 1)[-1]
                if name in sources:
                    logger.warning(f"Template {name!r} defined twice, using {path}")
                sources[name] = source

        template_set = cls(sources)
        for name in sources:
            try:
                template_set.env.get_template(name)
            except TemplateError as e:
                raise ConfigError(f"Error parsing template {name}: {e}")

        logger.info(f"Loaded {len(sources)} template file(s)")
        return template_set

    def _compile(self, text: str) -> Template:
        with self._lock:
            compiled = self._compiled.get(text)
            if compiled is None:
                compiled = self.env.from_string(text)
                self._compiled[text] = compiled
            return compiled

    def render(self, text: str, message: AlertMessage) -> str:
        """
        Render template text against an alert message.

        Raises:
            RenderError: the text does not parse, references an undefined
                variable or template, or fails while executing
        """
        try:
            return self._compile(text).render(message.template_data())
        except (TemplateError, TypeError, ValueError, LookupError, ArithmeticError, re.error) as e:
            raise RenderError(text, e)
