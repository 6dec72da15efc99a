"""
The logging setup and the loggers of the reconciled objects.

The messages about the reconciled resources and about the submitted jobs
go through an :class:`ObjectLogger`, which attaches the resource's reference
to the records as ``k8s_ref``. The text formatters can show it as a prefix
(``[namespace/name] message``); the JSON formatters put it into its own field.
"""
import bisect
import copy
import enum
import logging
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any, TextIO

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from kubevent._cogs.helpers import typedefs

logger = logging.getLogger('kubevent.objects')

DEFAULT_JSON_REFKEY = 'object'

# The upper bounds of the levels (inclusive) and their names for the log collectors.
_SEVERITY_LEVELS = [logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR]
_SEVERITY_NAMES = ['debug', 'info', 'warn', 'error', 'fatal']


class LogFormat(enum.Enum):
    """ The log formats as selected in the CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # a marker only, never used as a format string


def get_ref(record: logging.LogRecord) -> dict[str, str] | None:
    return getattr(record, 'k8s_ref', None)


class ObjectFormatter(logging.Formatter):
    pass


class ObjectTextFormatter(ObjectFormatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    """
    JSON lines with the object's reference under the configured key.

    Every line also has a ``severity`` field, which is what the log collectors
    of the clouds expect, and a timestamp.
    """

    def __init__(self, *args: Any, refkey: str | None = None, **kwargs: Any) -> None:
        kwargs['reserved_attrs'] = {*kwargs.get('reserved_attrs', RESERVED_ATTRS), 'k8s_ref'}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self.refkey = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: dict[str, object],
            record: logging.LogRecord,
            message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        ref = get_ref(record)
        if ref is not None:
            log_record[self.refkey] = ref
        log_record.setdefault('severity', _SEVERITY_NAMES[bisect.bisect_left(_SEVERITY_LEVELS,
                                                                             record.levelno)])


class ObjectPrefixingMixin(ObjectFormatter):
    def format(self, record: logging.LogRecord) -> str:
        ref = get_ref(record)
        if ref is not None:
            path = '/'.join(filter(None, [ref.get('namespace'), ref.get('name', '')]))
            record = copy.copy(record)
            record.msg = f"[{path}] {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


class ObjectLogger(typedefs.LoggerAdapter):
    """
    A logger of one resource: e.g. of the one whose change is being reconciled.

    Only the identifying fields are kept in the reference, and only if known.
    """

    def __init__(
            self,
            *,
            kind: str | None,
            name: str | None,
            namespace: str | None = None,
            uid: str | None = None,
    ) -> None:
        fields = {'kind': kind, 'name': name, 'namespace': namespace, 'uid': uid}
        super().__init__(logger, {'k8s_ref': {key: val for key, val in fields.items() if val}})

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # The per-call extras are kept along with the reference, not replaced by it.
        kwargs['extra'] = {**(self.extra or {}), **kwargs.get('extra', {})}
        return msg, kwargs


# Our own handler is recognised & replaced when configured again (e.g. in the tests).
if TYPE_CHECKING:
    class _KubeventStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _KubeventStreamHandler(logging.StreamHandler):
        pass


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    handler = _KubeventStreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format, log_prefix=log_prefix,
                                        log_refkey=log_refkey))

    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _KubeventStreamHandler)]
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug or verbose else logging.WARNING if quiet else logging.INFO)

    # asyncio's own debug messages are only interesting when debugging.
    asyncio_logger = logging.getLogger('asyncio')
    asyncio_logger.propagate = bool(debug)
    if not debug:
        asyncio_logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> ObjectFormatter:
    """
    Pick the formatter for the format; the prefixes are by default only in the texts.
    """
    if log_prefix is None:
        log_prefix = log_format is not LogFormat.JSON

    if log_format is LogFormat.JSON:
        json_cls = ObjectPrefixingJsonFormatter if log_prefix else ObjectJsonFormatter
        return json_cls(refkey=log_refkey)

    if isinstance(log_format, LogFormat):
        fmt = log_format.value
    elif isinstance(log_format, str):
        fmt = log_format
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")
    text_cls = ObjectPrefixingTextFormatter if log_prefix else ObjectTextFormatter
    return text_cls(fmt)
