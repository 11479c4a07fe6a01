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

from typing import Dict, Optional, cast

from sparkrsvd.errors.utils import ErrorClassesReader


class RsvdException(Exception):
    """
    Base Exception for errors raised by the RSVD engine.
    """

    def __init__(
        self,
        message: Optional[str] = None,
        error_class: Optional[str] = None,
        message_parameters: Optional[Dict[str, str]] = None,
    ):
        # `message` vs `error_class` & `message_parameters` are mutually exclusive.
        assert (message is not None and (error_class is None and message_parameters is None)) or (
            message is None and (error_class is not None and message_parameters is not None)
        )

        self.error_reader = ErrorClassesReader()

        if message is None:
            self.message = self.error_reader.get_error_message(
                cast(str, error_class), cast(Dict[str, str], message_parameters)
            )
        else:
            self.message = message

        self.error_class = error_class
        self.message_parameters = message_parameters
        super().__init__(self.message)

    def getErrorClass(self) -> Optional[str]:
        """
        Returns an error class as a string.

        See Also
        --------
        :meth:`RsvdException.getMessageParameters`
        """
        return self.error_class

    def getMessageParameters(self) -> Optional[Dict[str, str]]:
        """
        Returns a message parameters as a dictionary.

        See Also
        --------
        :meth:`RsvdException.getErrorClass`
        """
        return self.message_parameters

    def __reduce__(self):  # type: ignore[no-untyped-def]
        # Keep the error class when the exception crosses a worker boundary.
        if self.error_class is not None:
            return (_rebuild, (type(self), self.error_class, self.message_parameters))
        return (type(self), (self.message,))

    def __str__(self) -> str:
        if self.getErrorClass() is not None:
            return f"[{self.getErrorClass()}] {self.message}"
        else:
            return self.message


def _rebuild(cls, error_class, message_parameters):  # type: ignore[no-untyped-def]
    return cls(error_class=error_class, message_parameters=message_parameters)


class IndexOutOfBoundsException(RsvdException, IndexError):
    """
    Matrix entry coordinates outside of the declared matrix shape.
    """


class DimensionMismatchException(RsvdException, ValueError):
    """
    Operands whose shape, block size or partitioning are not aligned.
    """


class IllegalArgumentException(RsvdException, ValueError):
    """
    Invalid RSVD configuration.
    """


class NumericalFailureException(RsvdException, ArithmeticError):
    """
    NaN or infinite values produced during the computation.
    """
