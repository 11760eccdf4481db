"""Redacter

Copy files between local disks, object storage, zip archives and the
clipboard while passing their content through external DLP services that
detect PII. See ``redacter.pipeline`` for the copy orchestration,
``redacter.engine`` for backend selection and chaining, and ``redacter.cli``
for the command-line entrypoint.
"""

__all__ = [
    "models",
    "errors",
    "storage",
    "enumerate",
    "content_type",
    "convert",
    "redacters",
    "engine",
    "throttle",
    "image_redact",
    "pipeline",
    "results",
    "config",
    "settings",
    "logging",
    "cli",
]

__version__ = "0.14.1"
