import logging

from flask import current_app, has_app_context


def logger() -> logging.Logger:
    # inside a request we share the flask (gunicorn) logger
    if has_app_context():
        return current_app.logger
    return logging.getLogger('sandbox')


def truncate(text: str, limit: int) -> str:
    if limit < 0 or len(text) <= limit:
        return text
    omitted = len(text) - limit
    return text[:limit] + f'\n... [output truncated, {omitted} chars omitted]'
