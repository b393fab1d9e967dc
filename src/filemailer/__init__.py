"""Chat-driven file delivery service with admin-approved e-mail changes.

This package lets a user registered through a Telegram bot submit a URL;
the HTTP service downloads the resource and mails it as an attachment to
the user's registered address. It includes:

- A delivery pipeline (authenticate, fetch, stage, compose, deliver, cleanup)
- An approval workflow for e-mail address changes decided by an admin chat
- An append-only job log of every pipeline stage transition
- Prometheus metrics for monitoring
- FastAPI REST API exposing ``/send``, ``/health`` and ``/metrics``
- SQLite persistence for users, chat links and change requests

Example:
    Serving the HTTP side::

        from filemailer.config import load_settings
        from filemailer.server import build_app

        app = build_app(load_settings("config.ini"))
"""

__version__ = "0.1.0"
