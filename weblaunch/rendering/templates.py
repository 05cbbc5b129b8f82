"""Named template registry backed by Jinja2."""

import logging
from pathlib import Path
from typing import IO, Any, Callable, Mapping, Optional, Union

from fastapi.responses import HTMLResponse
from jinja2 import DictLoader, Environment, StrictUndefined, Template, TemplateError

from weblaunch.domain.correlation_id import CorrelationLoggerAdapter
from weblaunch.domain.errors import RenderError, TemplateCompileError, TemplateNotFoundError

RENDER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("weblaunch.rendering"), {})


def _collect_sources(root: Path, pattern: str) -> dict[str, str]:
    """Read every file under ``root`` matching ``pattern``, keyed by base name."""
    try:
        matches = sorted(path for path in root.glob(pattern) if path.is_file())
    except (ValueError, NotImplementedError) as error:
        raise TemplateCompileError(f"template: bad pattern {pattern!r}: {error}") from error
    if not matches:
        raise TemplateCompileError(f"template: pattern matches no files: {pattern!r}")

    sources: dict[str, str] = {}
    for path in matches:
        try:
            sources[path.name] = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            raise TemplateCompileError(f"template: cannot read {path}: {error}") from error
    return sources


class TemplateRenderer:
    """Compiles a template set once and renders templates by name.

    Templates are registered under their base file name, so
    ``assets/templates/hello.html`` is rendered as ``"hello.html"`` and other
    templates may ``{% include %}`` or ``{% extends %}`` it by that name.
    Output is HTML-escaped and referencing an undefined variable is an error.

    Only files are registered. Reusable fragments are written as Jinja2 macros
    and pulled in with ``{% import %}`` or ``{% from ... import %}``; a macro
    or block name is not itself a renderable template name.
    """

    def __init__(
        self,
        filesystem: Union[str, Path],
        pattern: str,
        funcs: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> None:
        sources = _collect_sources(Path(filesystem), pattern)
        self._env = Environment(
            loader=DictLoader(sources),
            autoescape=True,
            undefined=StrictUndefined,
            auto_reload=False,
        )
        if funcs:
            self._env.globals.update(funcs)
            self._env.filters.update(funcs)

        self._templates: dict[str, Template] = {}
        for name in sources:
            try:
                self._templates[name] = self._env.get_template(name)
            except TemplateError as error:
                raise TemplateCompileError(f"template {name}: {error}") from error

        RENDER_LOGGER.debug(
            "Templates compiled",
            extra={"event": "templates_compiled", "templates": self.names()},
        )

    def names(self) -> list[str]:
        """Return the registered template names in sorted order."""
        return sorted(self._templates)

    def render_to_string(self, name: str, data: Any = None) -> str:
        """Render ``name`` with ``data`` and return the text.

        A mapping supplies the template variables directly; any other value is
        exposed to the template as ``data``.
        """
        template = self._templates.get(name)
        if template is None:
            raise TemplateNotFoundError(name)

        if data is None:
            context: Mapping[str, Any] = {}
        elif isinstance(data, Mapping):
            context = data
        else:
            context = {"data": data}

        try:
            return template.render(context)
        except Exception as error:  # pylint: disable=broad-except
            raise RenderError(name, str(error)) from error

    def render(self, output: IO[str], name: str, data: Any = None) -> None:
        """Write the rendered template to ``output``.

        Nothing is written when rendering fails.
        """
        output.write(self.render_to_string(name, data))

    def response(self, name: str, data: Any = None, status_code: int = 200) -> HTMLResponse:
        """Render ``name`` into an HTML response for a route handler."""
        return HTMLResponse(self.render_to_string(name, data), status_code=status_code)
