"""HTML directory listings for directories without an index file."""

import logging
import os
import urllib.parse
from dataclasses import dataclass
from datetime import datetime
from http import HTTPStatus

import jinja2

from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import ResponseWriter

DIRLIST_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.handlers.dirlist"), {}
)

MOD_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
READ_FAILURE_MESSAGE = "Failed to read directory."

BUILTIN_TEMPLATE = (
    "<html><head><title>Index of {{ path }}</title></head><body>"
    "<h1>Index of {{ path }}</h1><ul>"
    "{% for file in files %}"
    '<li><a href="{{ prefix }}{{ file.href }}{% if file.is_dir %}/{% endif %}">'
    "{{ file.name }}{% if file.is_dir %}/{% endif %}</a></li>"
    "{% endfor %}"
    "</ul></body></html>"
)

_ENVIRONMENT = jinja2.Environment(autoescape=True)


@dataclass(frozen=True)
class DirEntry:
    """One immediate child of a listed directory.

    ``name`` is safe to display; ``href`` is the percent-encoded raw name.
    """

    name: str
    href: str
    is_dir: bool
    size: int
    mod_time: str


def display_name(name: str) -> str:
    """Return name with undecodable filesystem bytes shown as U+FFFD."""
    return os.fsencode(name).decode("utf-8", errors="replace")


def quote_name(name: str) -> str:
    """Percent-encode the raw filesystem bytes of name for use in a link."""
    return urllib.parse.quote(os.fsencode(name), safe="")


def list_entries(directory: str) -> list[DirEntry]:
    """Read the immediate children of directory, sorted byte-wise by name."""
    with os.scandir(directory) as scan:
        items = sorted(scan, key=lambda item: os.fsencode(item.name))
    entries = []
    for item in items:
        name, href = display_name(item.name), quote_name(item.name)
        try:
            info = item.stat()
            is_dir = item.is_dir()
        except OSError:
            # Dangling symlinks and races still get listed.
            entries.append(DirEntry(name, href, False, 0, ""))
            continue
        entries.append(
            DirEntry(
                name=name,
                href=href,
                is_dir=is_dir,
                size=info.st_size,
                mod_time=datetime.fromtimestamp(info.st_mtime).strftime(
                    MOD_TIME_FORMAT
                ),
            )
        )
    return entries


def load_template(template_path: str) -> jinja2.Template:
    """Compile the listing template at template_path, or the built-in one."""
    try:
        with open(template_path, "r", encoding="utf-8") as template_file:
            return _ENVIRONMENT.from_string(template_file.read())
    except (OSError, UnicodeDecodeError, jinja2.TemplateError) as error:
        DIRLIST_LOGGER.debug(
            "Using built-in listing template",
            extra={
                "event": "dirlist_template_fallback",
                "path": template_path,
                "error_type": type(error).__name__,
            },
        )
    return _ENVIRONMENT.from_string(BUILTIN_TEMPLATE)


def link_prefix(url_path: str) -> str:
    """Return the escaped request path used in front of every entry link."""
    prefix = urllib.parse.quote(os.fsencode(url_path), safe="/")
    return prefix if prefix.endswith("/") else prefix + "/"


def render_listing(
    writer: ResponseWriter, directory: str, url_path: str, template_path: str
) -> None:
    """Write an HTML listing of directory to the client."""
    try:
        entries = list_entries(directory)
    except OSError as error:
        DIRLIST_LOGGER.warning(
            "Directory could not be read",
            extra={
                "event": "dirlist_read_failed",
                "path": directory,
                "error_type": type(error).__name__,
            },
        )
        body = READ_FAILURE_MESSAGE.encode()
        writer.headers["Content-Type"] = "text/plain; charset=utf-8"
        writer.headers["Content-Length"] = str(len(body))
        writer.write_header(HTTPStatus.INTERNAL_SERVER_ERROR.value)
        writer.write(body)
        return

    template = load_template(template_path)
    body = template.render(
        path=display_name(url_path), files=entries, prefix=link_prefix(url_path)
    ).encode("utf-8")
    writer.headers["Content-Type"] = "text/html; charset=utf-8"
    writer.headers["Content-Length"] = str(len(body))
    writer.write_header(HTTPStatus.OK.value)
    writer.write(body)
