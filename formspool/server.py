"""
A small WSGI application that accepts uploads through an HTML form, for
exercising the parser by hand:

    python -m formspool.server --upload-dir temp
"""
from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING
from wsgiref.simple_server import make_server

import click

from .exceptions import FormParserError
from .multipart import parse_environ

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterable
    from typing import Any

    from .multipart import Item, ParserConfig


# Get logger for this module.
logger = logging.getLogger(__name__)

UPLOAD_FORM = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Upload</title></head>
<body>
<form method="post" enctype="multipart/form-data">
<p><input type="text" name="comment"></p>
<p><input type="file" name="upload" multiple></p>
<p><input type="submit" value="Upload"></p>
</form>
</body>
</html>
"""


class UploadApp:
    """
    WSGI application serving :data:`UPLOAD_FORM` on GET and parsing the
    submitted form on POST.  Spooled parts are handed to ``on_upload``; by
    default they are logged and left where the storage put them.
    """
    def __init__(self, config: ParserConfig = {}, on_upload: Callable[[list[Item]], None] | None = None) -> None:
        self.config = config
        self.on_upload = on_upload

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        method = environ.get('REQUEST_METHOD', 'GET')

        if method == 'GET':
            return self._respond(start_response, '200 OK', UPLOAD_FORM)

        if method == 'POST':
            try:
                items = parse_environ(environ, config=self.config)
            except FormParserError as e:
                logger.warning("Rejecting upload: %s", e)
                return self._respond(start_response, '400 Bad Request', '<h1>400 Bad Request</h1>')

            for item in items:
                logger.info("Received %r", item)
            if self.on_upload is not None:
                self.on_upload(items)

            return self._respond(start_response, '303 See Other', '<h1>Redirect...</h1>', [('Location', '/')])

        return self._respond(start_response, '405 Method Not Allowed', '<h1>405 Method Not Allowed</h1>',
                             [('Allow', 'GET, POST')])

    @staticmethod
    def _respond(start_response: Callable[..., Any], status: str, html: str,
                 headers: list[tuple[str, str]] = []) -> list[bytes]:
        body = html.encode('utf-8')
        start_response(status, [
            ('Content-Type', 'text/html; charset=utf-8'),
            ('Content-Length', str(len(body))),
        ] + headers)
        return [body]


@click.command()
@click.option('--host', default='localhost', show_default=True, help='Interface to listen on.')
@click.option('--port', default=8000, type=int, show_default=True, help='Port to listen on.')
@click.option('--upload-dir', default='temp', type=click.Path(file_okay=False), show_default=True,
              help='Directory uploaded parts are spooled to.')
def main(host: str, port: int, upload_dir: str) -> None:
    """Serve an upload form and spool whatever is posted to it."""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s %(message)s')

    os.makedirs(upload_dir, exist_ok=True)
    app = UploadApp({'UPLOAD_DIR': upload_dir})

    with make_server(host, port, app) as server:
        logger.info("Serving on http://%s:%d/, spooling to %r", host, port, upload_dir)
        server.serve_forever()


if __name__ == '__main__':
    main()
