"""
=============================================================================
PAGE TEMPLATES
=============================================================================

The set of named HTML templates the page handlers render, backed by Jinja2.

    templates/
      base.html       shared layout ({% block content %})
      home.html       {% extends "base.html" %}   → render("home", data)
      about.html
      account.html

Every *.html file is compiled when the TemplateSet is created, so a
syntax error stops the server at startup instead of surfacing on the first
request for that page. Autoescaping is on for .html.

=============================================================================
STREAMED RENDERING
=============================================================================

render() returns a lazy iterator of UTF-8 chunks (Template.generate), which
the server writes as it is produced. An error raised while rendering is
logged here and re-raised out of the iterator: the status line and headers
are already on the wire by then, so the server drops the connection and
the client receives a truncated page.

=============================================================================
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union
import logging

from jinja2 import (
    Environment,
    FileSystemLoader,
    Template,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)


logger = logging.getLogger(__name__)


DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"

TEMPLATE_SUFFIX = ".html"


class TemplateLoadError(Exception):
    """The template directory could not be loaded at startup."""


class TemplateSet:
    """
    Compiled page templates addressed by page name ("home", "about").

        templates = TemplateSet("templates")
        body = templates.render("about", {"title": "About GWS"})
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory) if directory is not None else DEFAULT_TEMPLATE_DIR
        if not self.directory.is_dir():
            raise TemplateLoadError(f"Template directory not found: {self.directory}")

        self._env = Environment(
            loader=FileSystemLoader(str(self.directory)),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._templates: Dict[str, Template] = {}

        for filename in self._env.list_templates(extensions=[TEMPLATE_SUFFIX.lstrip(".")]):
            try:
                template = self._env.get_template(filename)
            except TemplateSyntaxError as e:
                raise TemplateLoadError(
                    f"{e.filename or filename}:{e.lineno}: {e.message}"
                ) from e
            self._templates[filename[:-len(TEMPLATE_SUFFIX)]] = template

        if not self._templates:
            raise TemplateLoadError(f"No {TEMPLATE_SUFFIX} templates in {self.directory}")

        logger.debug(f"Loaded templates from {self.directory}: {', '.join(self.names)}")

    @property
    def names(self) -> List[str]:
        return sorted(self._templates)

    def __contains__(self, page: str) -> bool:
        return page in self._templates

    def render(self, page: str, data: Dict[str, Any]) -> Iterator[bytes]:
        """
        Lazily render `page` with `data`.

        Raises TemplateNotFound immediately for an unknown page. Errors
        during rendering are logged and raised from the iterator.
        """
        template = self._templates.get(page)
        if template is None:
            raise TemplateNotFound(page)
        return self._generate(page, template, data)

    def _generate(self, page: str, template: Template, data: Dict[str, Any]) -> Iterator[bytes]:
        try:
            for chunk in template.generate(**data):
                yield chunk.encode("utf-8")
        except TemplateError as e:
            logger.error(f"Error rendering template {page!r}: {e}")
            raise
