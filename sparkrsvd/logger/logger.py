# -*- encoding: utf-8 -*-
#
# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

import logging
import json
import time
import traceback
import sys
from contextlib import contextmanager
from typing import cast, Iterator, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from logging import _ArgsType, _ExcInfoType


class JSONFormatter(logging.Formatter):
    """
    Formats log records as one JSON object per line with the fields
    ``ts``, ``level``, ``logger``, ``msg``, ``context`` and, when the record
    carries exception information, ``exception``.
    """

    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "context": record.__dict__.get("kwargs", {}),
        }
        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            stacktrace = traceback.extract_tb(exc_tb)

            structured_stacktrace = [
                {
                    "class": None,
                    "method": frame.name,
                    "file": frame.filename,
                    "line": str(frame.lineno),
                }
                for frame in stacktrace
            ]
            log_entry["exception"] = {
                "class": exc_type.__name__ if exc_type else "UnknownException",
                "msg": str(exc_value),
                "stacktrace": structured_stacktrace,
            }
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class RsvdLogger(logging.Logger):
    """
    Logger of the RSVD engine. Messages are written in a structured JSON
    format; keyword arguments passed to the logging calls end up in the
    ``context`` map of the record.

    Example
    -------
    >>> import logging
    >>> import json
    >>> from io import StringIO
    >>> from sparkrsvd.logger import RsvdLogger

    >>> logger = RsvdLogger.getLogger("ExampleLogger")
    >>> logger.setLevel(logging.INFO)
    >>> stream = StringIO()
    >>> handler = logging.StreamHandler(stream)
    >>> logger.addHandler(handler)

    >>> logger.info("Finished multiply", iteration=1, seconds=0.5)
    >>> log = json.loads(stream.getvalue().strip().split('\\n')[0])
    >>> _ = log.pop("ts")
    >>> print(json.dumps(log, ensure_ascii=False, indent=2))
    {
      "level": "INFO",
      "logger": "ExampleLogger",
      "msg": "Finished multiply",
      "context": {
        "iteration": 1,
        "seconds": 0.5
      }
    }
    """

    def __init__(self, name: str = "RsvdLogger"):
        super().__init__(name, level=logging.WARN)
        _handler = logging.StreamHandler()
        self.addHandler(_handler)

    def addHandler(self, handler: logging.Handler) -> None:
        """
        Add the specified handler to this logger in structured JSON format.
        """
        handler.setFormatter(JSONFormatter())
        super().addHandler(handler)

    @staticmethod
    def getLogger(name: Optional[str] = None) -> "RsvdLogger":
        """
        Return a RsvdLogger with the specified name, creating it if necessary.

        Parameters
        ----------
        name : str, optional
            The name of the logger, ``sparkrsvd`` by default.

        Returns
        -------
        RsvdLogger
        """
        existing_logger_class = logging.getLoggerClass()
        logging.setLoggerClass(RsvdLogger)
        try:
            rsvd_logger = logging.getLogger(name or "sparkrsvd")
        finally:
            logging.setLoggerClass(existing_logger_class)

        return cast(RsvdLogger, rsvd_logger)

    @contextmanager
    def stage(self, name: str, **context: object) -> Iterator[None]:
        """
        Log the wall-clock duration of the enclosed block at INFO level.

        Parameters
        ----------
        name : str
            The stage name, e.g. ``multiply`` or ``tsqr``.
        """
        start = time.perf_counter()
        self.debug("Starting %s", name, stage=name, **context)
        yield
        self.info(
            "Finished %s",
            name,
            stage=name,
            seconds=round(time.perf_counter() - start, 3),
            **context,
        )

    def _log(
        self,
        level: int,
        msg: object,
        args: "_ArgsType",
        exc_info: Optional["_ExcInfoType"] = None,
        extra: Optional[Mapping[str, object]] = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: object,
    ) -> None:
        if extra is not None:
            kwargs["extra"] = extra
        super()._log(
            level=level,
            msg=msg,
            args=args,
            exc_info=exc_info,
            extra={"kwargs": kwargs},
            stack_info=stack_info,
            stacklevel=stacklevel,
        )


def _test() -> None:
    import doctest
    import sparkrsvd.logger.logger

    globs = sparkrsvd.logger.logger.__dict__.copy()
    (failure_count, test_count) = doctest.testmod(
        sparkrsvd.logger.logger, globs=globs, optionflags=doctest.ELLIPSIS
    )

    if failure_count:
        sys.exit(-1)


if __name__ == "__main__":
    _test()
